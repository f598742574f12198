"""
Stochastic Poisson FEM - unified entry point.

Usage:
    uv run python main.py
    uv run python main.py problem=noisy_wave solver.name=gmres seed=1
    uv run python main.py problem=noisy_wave n_trials=200
    uv run python main.py -m dx_denominator=8,16,32,64
"""

import logging
import os
import sys
from fractions import Fraction
from pathlib import Path

import hydra
import mlflow
from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

load_dotenv()
sys.path.insert(0, str(Path(__file__).parent / "src"))

from SFEM import SolverParameters, monte_carlo, solve, square_mesh  # noqa: E402
from SFEM.problem import PROBLEMS  # noqa: E402

log = logging.getLogger(__name__)


def setup_mlflow(cfg: DictConfig) -> str:
    """Setup MLflow tracking and return experiment name."""
    tracking_uri = cfg.mlflow.get("tracking_uri", "./mlruns")
    os.environ["MLFLOW_TRACKING_URI"] = str(tracking_uri)
    mlflow.set_tracking_uri(tracking_uri)
    mlflow.set_experiment(cfg.experiment_name)
    return cfg.experiment_name


def build_params(cfg: DictConfig) -> SolverParameters:
    return SolverParameters(
        solver=cfg.solver.name,
        tol=cfg.solver.tol,
        maxiter=cfg.solver.maxiter,
        linear_tol=cfg.solver.linear_tol,
        linear_maxiter=cfg.solver.linear_maxiter,
        seed=cfg.get("seed"),
    )


def run_solver(cfg: DictConfig):
    """Build mesh and problem from config, solve, and log to MLflow."""
    if cfg.problem not in PROBLEMS:
        raise ValueError(f"Unknown problem {cfg.problem!r}. Use one of {sorted(PROBLEMS)}")

    problem = PROBLEMS[cfg.problem]()
    dx = Fraction(1, cfg.dx_denominator) * Fraction(str(cfg.domain.scale))
    mesh = square_mesh(tuple(cfg.domain.bounds), dx, cfg.bc_type)
    params = build_params(cfg)

    run_name = f"{cfg.problem}_N{cfg.dx_denominator}_{params.solver}"
    with mlflow.start_run(run_name=run_name, tags={"problem": cfg.problem}):
        mlflow.log_params(params.to_mlflow())
        mlflow.log_params({"dx": float(dx), "bc_type": cfg.bc_type, "n_trials": cfg.n_trials})
        mlflow.log_dict(OmegaConf.to_container(cfg), "config.yaml")

        log.info(f"Solving: {cfg.problem} dx={dx} nodes={mesh.nonodes}")
        if problem.stochastic and cfg.n_trials > 1:
            solution = monte_carlo(mesh, problem, cfg.n_trials, seed=params.seed, params=params)
        else:
            solution = solve(mesh, problem, params=params)

        mlflow.log_metrics(solution.metrics.to_mlflow())
        if cfg.get("save_csv"):
            out = Path(hydra.core.hydra_config.HydraConfig.get().runtime.output_dir) / "solution.csv"
            solution.to_dataframe().to_csv(out, index=False)
            mlflow.log_artifact(str(out))

    log.info(f"Done: {solution.metrics.iterations} iter, errors={solution.errors}")
    return solution


@hydra.main(config_path="conf", config_name="config", version_base=None)
def main(cfg: DictConfig) -> float | None:
    """Main entry point. Returns the max nodal error when the solution is known."""
    log.info(f"Problem: {cfg.problem}, dx=1/{cfg.dx_denominator}, solver={cfg.solver.name}")
    log.info(f"MLflow experiment: {setup_mlflow(cfg)}")

    solution = run_solver(cfg)
    return solution.errors.get("l_inf")


if __name__ == "__main__":
    main()
