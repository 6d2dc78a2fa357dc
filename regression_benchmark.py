#!/usr/bin/env python3
"""
MXP Tree Store Regression Benchmark

Builds a synthetic tree in a temporary store, times every store operation,
samples process memory, and writes JSON and text reports.
"""

import sys
import os
import json
import time
import logging
import argparse
import statistics
import tempfile
from pathlib import Path
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import psutil

from mxp import FileStore, NodeProperties


class TreeRegressionBenchmark:
    """Regression checks and timing for the file-backed tree store."""

    def __init__(self, output_dir: Optional[Path] = None, width: int = 4, depth: int = 3, iterations: int = 3):
        self.output_dir = output_dir or Path("regression_results")
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.width = width
        self.depth = depth
        self.iterations = iterations
        self.results: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "python_version": sys.version,
            "parameters": {"width": width, "depth": depth, "iterations": iterations},
            "tests": [],
            "metrics": {},
            "summary": {}
        }

        self.logger = logging.getLogger("mxp.regression")
        self.performance_data: List[Dict[str, Any]] = []

    def _get_memory_usage(self) -> Dict[str, Any]:
        process = psutil.Process(os.getpid())
        memory_info = process.memory_info()
        return {
            "rss": memory_info.rss,
            "vms": memory_info.vms,
            "percent": process.memory_percent()
        }

    def _timed(self, operation: str, func: Callable[[], Any]) -> Any:
        start_time = time.time()
        result = func()
        duration = time.time() - start_time
        self.performance_data.append({
            "operation": operation,
            "duration": duration,
            "memory_usage": self._get_memory_usage()
        })
        return result

    def _build_tree(self, store: FileStore) -> List[str]:
        """Create a ``width``-ary map tree ``depth`` levels deep; return the leaf ids."""
        level = [store.root_nodes_by_type["map"].id]
        for depth in range(self.depth):
            next_level = []
            for parent_id in level:
                for index in range(self.width):
                    node, _ = self._timed(
                        "create_node",
                        lambda: store.create_node(
                            "map",
                            NodeProperties(title=f"Node {depth}.{index}"),
                            parent_id,
                        ),
                    )
                    next_level.append(node.id)
            level = next_level
        return level

    def test_tree_operations(self, storage_root: Path) -> Dict[str, Any]:
        """Build a tree, then exercise update, move, sync, reload and remove."""
        self.logger.info("Testing tree operations...")

        results: Dict[str, Any] = {
            "test_name": "tree_operations",
            "steps": [],
            "start_time": time.time()
        }

        def step(name: str, func: Callable[[], Any]) -> Any:
            step_start = time.time()
            value = self._timed(name, func)
            results["steps"].append({"step": name, "duration": time.time() - step_start, "success": True})
            return value

        try:
            store = step("open_store", lambda: FileStore.open(storage_root))
            leaves = self._build_tree(store)
            results["node_count"] = len(store.get_all_nodes())

            map_root_id = store.root_nodes_by_type["map"].id
            step("update_leaf", lambda: store.update_node(leaves[0], {"setMetrics": {"readinessLevel": 5}}))
            step("clear_leaf", lambda: store.update_node(leaves[0], {"setMetrics": {"readinessLevel": None}}))
            step("move_leaf", lambda: store.set_node_parent(leaves[-1], map_root_id, 0))

            waypoint, _ = step(
                "create_waypoint",
                lambda: store.create_node(
                    "waypoint",
                    NodeProperties(title="Release", metadata={"referenceMapNodeId": map_root_id}),
                ),
            )
            step("sync_waypoint", lambda: store.sync_waypoint(waypoint.id))
            resync = step("resync_waypoint", lambda: store.sync_waypoint(waypoint.id))
            if not resync.is_empty():
                raise ValueError("Second waypoint sync was not a no-op")

            before = store.get_all_nodes()
            reloaded = step("reload_store", store.load)
            if reloaded != before:
                raise ValueError("Reloading a healthy store changed the tree")

            first_child_id = store.get_node(map_root_id).children_ids[0]
            step("remove_subtree", lambda: store.remove_node(first_child_id))

            results["success"] = True
            self.logger.info("[PASS] Tree operations test passed")

        except Exception as e:
            results["success"] = False
            results["error"] = str(e)
            self.logger.error(f"[FAIL] Tree operations test failed: {e}")

        results["end_time"] = time.time()
        results["total_duration"] = results["end_time"] - results["start_time"]
        return results

    def test_load_benchmarks(self, storage_root: Path) -> Dict[str, Any]:
        """Time repeated loads of the store built by ``test_tree_operations``."""
        self.logger.info("Running load benchmarks...")

        load_times = []
        for _ in range(self.iterations):
            start_time = time.time()
            self._timed("load_store", lambda: FileStore.open(storage_root))
            load_times.append(time.time() - start_time)

        return {
            "test_name": "load_benchmarks",
            "benchmarks": [{
                "operation": "load_store",
                "iterations": self.iterations,
                "times": load_times,
                "average": statistics.mean(load_times),
                "min": min(load_times),
                "max": max(load_times),
                "std_dev": statistics.stdev(load_times) if len(load_times) > 1 else 0
            }],
            "total_duration": sum(load_times),
            "success": True
        }

    def test_error_handling(self, storage_root: Path) -> Dict[str, Any]:
        """Rejected mutations must leave the store untouched."""
        self.logger.info("Testing error handling...")

        results: Dict[str, Any] = {"test_name": "error_handling", "tests": [], "start_time": time.time()}
        store = FileStore.open(storage_root)
        roots = store.root_nodes_by_type
        parent, _ = store.create_node("map", NodeProperties(title="Cycle parent"))
        child, _ = store.create_node("map", NodeProperties(title="Cycle child"), parent.id)
        before = store.get_all_nodes()

        cases = [
            ("unknown_node", lambda: store.update_node("missing", {"title": "x"})),
            ("unknown_parent", lambda: store.create_node("map", NodeProperties(), "missing")),
            ("cycle", lambda: store.set_node_parent(parent.id, child.id)),
            ("move_root", lambda: store.set_node_parent(roots["map"].id, roots["waypoint"].id)),
            ("invalid_type", lambda: store.create_node("galaxy", NodeProperties())),
        ]
        for name, func in cases:
            try:
                func()
                rejected = False
            except (LookupError, ValueError):
                rejected = True
            results["tests"].append({"test": name, "success": rejected})

        untouched = store.get_all_nodes() == before
        results["tests"].append({"test": "snapshot_untouched", "success": untouched})
        results["success"] = all(test["success"] for test in results["tests"])
        results["total_duration"] = time.time() - results["start_time"]
        return results

    def collect_system_metrics(self) -> Dict[str, Any]:
        metrics: Dict[str, Any] = {"memory": self._get_memory_usage()}

        operation_durations: Dict[str, List[float]] = {}
        for sample in self.performance_data:
            operation_durations.setdefault(sample["operation"], []).append(sample["duration"])

        for operation, durations in operation_durations.items():
            metrics[f"{operation}_performance"] = {
                "count": len(durations),
                "average": statistics.mean(durations),
                "min": min(durations),
                "max": max(durations),
                "std_dev": statistics.stdev(durations) if len(durations) > 1 else 0
            }

        rss_samples = [sample["memory_usage"]["rss"] for sample in self.performance_data]
        if rss_samples:
            metrics["peak_rss"] = max(rss_samples)

        return metrics

    def run_regression_tests(self, quick: bool = False) -> Dict[str, Any]:
        """Run all regression checks against a throwaway store."""
        self.logger.info("Starting regression benchmark...")
        start_time = time.time()

        with tempfile.TemporaryDirectory() as temp_dir:
            storage_root = Path(temp_dir) / ".mxp"
            self.results["tests"].append(self.test_tree_operations(storage_root))
            if not quick:
                self.results["tests"].append(self.test_load_benchmarks(storage_root))
                self.results["tests"].append(self.test_error_handling(storage_root))

        self.results["metrics"] = self.collect_system_metrics()

        total_duration = time.time() - start_time
        passed_tests = sum(1 for test in self.results["tests"] if test.get("success", False))
        total_tests = len(self.results["tests"])

        self.results["summary"] = {
            "total_duration": total_duration,
            "total_tests": total_tests,
            "passed_tests": passed_tests,
            "failed_tests": total_tests - passed_tests,
            "success_rate": passed_tests / total_tests if total_tests > 0 else 0,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

        self.logger.info(f"Results: {passed_tests}/{total_tests} tests passed ({self.results['summary']['success_rate']:.1%})")
        return self.results

    def save_results(self) -> Path:
        results_file = self.output_dir / f"regression_results_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json"

        with open(results_file, 'w') as f:
            json.dump(self.results, f, indent=2)

        self.logger.info(f"Results saved to {results_file}")
        return results_file

    def generate_report(self) -> Path:
        """Generate a human-readable regression report."""
        report_file = self.output_dir / f"regression_report_{datetime.now().strftime('%Y%m%d_%H%M%S')}.txt"

        with open(report_file, 'w', encoding='utf-8') as f:
            f.write("MXP Tree Store Regression Report\n")
            f.write("=" * 50 + "\n\n")
            f.write(f"Timestamp: {self.results['timestamp']}\n")
            f.write(f"Python Version: {self.results['python_version']}\n")
            parameters = self.results["parameters"]
            f.write(f"Tree: width={parameters['width']} depth={parameters['depth']}\n\n")

            f.write("SUMMARY\n")
            f.write("-" * 20 + "\n")
            summary = self.results["summary"]
            f.write(f"Total Duration: {summary.get('total_duration', 0):.3f}s\n")
            f.write(f"Total Tests: {summary.get('total_tests', 0)}\n")
            f.write(f"Passed Tests: {summary.get('passed_tests', 0)}\n")
            f.write(f"Failed Tests: {summary.get('failed_tests', 0)}\n")
            f.write(f"Success Rate: {summary.get('success_rate', 0):.1%}\n\n")

            f.write("TEST RESULTS\n")
            f.write("-" * 20 + "\n")
            for test in self.results["tests"]:
                f.write(f"{test['test_name']}\n")
                f.write(f"  Success: {'PASS' if test.get('success') else 'FAIL'}\n")
                if 'total_duration' in test:
                    f.write(f"  Duration: {test['total_duration']:.3f}s\n")
                if 'error' in test:
                    f.write(f"  Error: {test['error']}\n")
                for step in test.get('steps', []):
                    status = 'PASS' if step.get('success') else 'FAIL'
                    f.write(f"    {step['step']}: {status} ({step['duration']:.3f}s)\n")
                f.write("\n")

            for key, value in self.results["metrics"].items():
                if key.endswith("_performance"):
                    operation_name = key.replace("_performance", "")
                    f.write(f"{operation_name.upper()} PERFORMANCE\n")
                    f.write("-" * 30 + "\n")
                    f.write(f"Count: {value['count']}\n")
                    f.write(f"Average: {value['average']:.4f}s\n")
                    f.write(f"Min: {value['min']:.4f}s\n")
                    f.write(f"Max: {value['max']:.4f}s\n")
                    f.write(f"Std Dev: {value['std_dev']:.4f}s\n")
                    f.write("\n")

            if "memory" in self.results["metrics"]:
                f.write("SYSTEM METRICS\n")
                f.write("-" * 20 + "\n")
                memory = self.results["metrics"]["memory"]
                f.write(f"RSS: {memory['rss'] / 1024 / 1024:.1f} MB\n")
                f.write(f"VMS: {memory['vms'] / 1024 / 1024:.1f} MB\n")
                f.write(f"Percent: {memory['percent']:.1f}%\n")
                if "peak_rss" in self.results["metrics"]:
                    f.write(f"Peak RSS: {self.results['metrics']['peak_rss'] / 1024 / 1024:.1f} MB\n")
                f.write("\n")

        self.logger.info(f"Report generated: {report_file}")
        return report_file


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the regression benchmark."""
    parser = argparse.ArgumentParser(description="MXP Tree Store Regression Benchmark")
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("regression_results"),
        help="Output directory for results"
    )
    parser.add_argument("--width", type=int, default=4, help="Children per node in the synthetic tree")
    parser.add_argument("--depth", type=int, default=3, help="Levels below the map root")
    parser.add_argument("--iterations", type=int, default=3, help="Repetitions of each load benchmark")
    parser.add_argument(
        "--quick",
        action="store_true",
        help="Run the tree operations test only"
    )

    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    benchmark = TreeRegressionBenchmark(args.output_dir, args.width, args.depth, args.iterations)
    benchmark.run_regression_tests(quick=args.quick)
    benchmark.save_results()
    benchmark.generate_report()

    return 0 if benchmark.results["summary"]["success_rate"] == 1.0 else 1


if __name__ == "__main__":
    sys.exit(main())
