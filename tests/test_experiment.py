import json
import os
import tempfile
import unittest
from unittest.mock import patch

from curbflow.experiments import run_experiment
from curbflow.kernel.simulation_kernel import SimulationEngine

class TestHeadlessExperiment(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.output_path = os.path.join(self.tmp.name, "results.json")

    def write_config(self, data) -> str:
        path = os.path.join(self.tmp.name, "config.json")
        with open(path, "w") as f:
            json.dump(data, f)
        return path

    def run_with(self, data):
        with patch.object(run_experiment, "SimulationEngine", wraps=SimulationEngine) as engine_cls:
            results = run_experiment.run_headless_experiment(self.write_config(data), self.output_path, 3)
        return results, engine_cls.call_args[0][0]

    def test_defaults_recompute_congestion_every_tick(self):
        results, sim_config = self.run_with({"seed": 3})
        self.assertEqual(sim_config.congestion_interval, 0)
        self.assertIsNotNone(sim_config.start_time)
        self.assertEqual([r["tick"] for r in results], [1, 2, 3])
        with open(self.output_path) as f:
            self.assertEqual(json.load(f), results)

    def test_explicit_interval_is_kept(self):
        _, sim_config = self.run_with({"seed": 3, "congestion_interval": 2.5})
        self.assertEqual(sim_config.congestion_interval, 2.5)

if __name__ == '__main__':
    unittest.main()
