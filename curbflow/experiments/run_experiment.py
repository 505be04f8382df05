import json
import logging
import sys
import time
from datetime import datetime

from curbflow.domain.config import SimulationConfig
from curbflow.kernel.scheduler import VirtualScheduler
from curbflow.kernel.simulation_kernel import SimulationEngine

logger = logging.getLogger(__name__)

def load_config(config_path: str) -> SimulationConfig:
    with open(config_path) as f:
        return SimulationConfig.model_validate(json.load(f))

def run_headless_experiment(config_path: str, output_path: str, duration_ticks: int = 100):
    sim_config = load_config(config_path)
    if sim_config.start_time is None:
        sim_config = sim_config.model_copy(update={"start_time": datetime(2024, 1, 1, 8, 0)})
    if "congestion_interval" not in sim_config.model_fields_set:
        # Rate limit is wall-clock; headless ticks run far faster than real time
        sim_config = sim_config.model_copy(update={"congestion_interval": 0})

    engine = SimulationEngine(sim_config, scheduler=VirtualScheduler())
    engine.initialize()

    results = []
    start_time = time.time()
    for _ in range(duration_ticks):
        snapshot = engine.run_tick()
        stats = engine.get_stats()
        results.append({
            "tick": snapshot.tick,
            "time": snapshot.currentTime.isoformat(),
            "active_vehicles": stats.vehicleStats.active,
            "average_battery": round(stats.vehicleStats.averageBattery, 2),
            "available_slots": stats.slotStats.available,
            "occupancy": stats.slotStats.currentOccupancy,
            "average_congestion": round(stats.averageCongestion, 2),
            "events": len(snapshot.events),
        })

    logger.info("Experiment finished in %.4fs", time.time() - start_time)

    with open(output_path, "w") as f:
        json.dump(results, f, indent=2)
    return results

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    if len(sys.argv) > 2:
        ticks = int(sys.argv[3]) if len(sys.argv) > 3 else 100
        run_headless_experiment(sys.argv[1], sys.argv[2], ticks)
    else:
        print("Usage: python -m curbflow.experiments.run_experiment <config.json> <output.json> [ticks]")
