"""
CLI Entrypoint Module

Demo-depot induction planning from the command line:
- Generates a plan for the demo depot and prints the assignment table and KPIs
- Optionally applies supervisor overrides (--override TS-101:standby)
- Optionally runs a what-if scenario and prints KPI deltas, risks and mitigations

Usage:
    python -m induction_planner.main
    python -m induction_planner.main --override TS-442:maintenance --approve ops-lead
    python -m induction_planner.main --scenario SCENARIO-001
"""

import argparse
import logging

from .errors import InductionError
from .models import InductionPlan, SimulationResult
from .service import InductionService
from .world import DemoSnapshotSource


def _print_plan(plan: InductionPlan) -> None:
    print(f"\n=== INDUCTION PLAN {plan.id} ({plan.approval_status.value}) ===\n")
    print(f"{'TRAINSET':<10} {'ROLE':<12} {'SCORE':>9}  {'BAY':<7} {'CLEAN':<6} RISKS")
    for a in plan.assignments:
        print(
            f"{a.trainset_id:<10} {a.role.value:<12} {a.score:>9.2f}  "
            f"{a.assigned_bay or '-':<7} {'yes' if a.cleaning_scheduled else 'no':<6} {len(a.risk_factors)}"
        )
    print("\nKPI projections:")
    for name, value in plan.kpi_projections.model_dump().items():
        print(f"  {name:<24} {value:.4f}")
    print("\nNotes:")
    for note in plan.objective_notes:
        print(f"  - {note}")


def _print_simulation(result: SimulationResult) -> None:
    print(f"\n=== WHAT-IF {result.scenario_id} ===\n")
    print("KPI deltas:")
    for name, delta in result.impact.kpi_deltas.items():
        print(f"  {name:<24} {delta:+.4f}")
    print("\nRisks:")
    for risk in result.impact.risk_assessment or ["none"]:
        print(f"  - {risk}")
    print("\nMitigations:")
    for suggestion in result.impact.mitigation_suggestions or ["none"]:
        print(f"  - {suggestion}")


def _parse_override(raw: str) -> tuple[str, str]:
    trainset_id, sep, role = raw.partition(":")
    if not sep or not trainset_id or not role:
        raise argparse.ArgumentTypeError(f"expected TRAINSET:ROLE, got {raw!r}")
    return trainset_id, role


def main() -> int:
    """Run the induction planner demo.

    Returns:
        0 on success, 1 on error.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    parser = argparse.ArgumentParser(
        description="Nightly trainset induction planning on the demo depot."
    )
    parser.add_argument(
        "--override",
        action="append",
        default=[],
        type=_parse_override,
        metavar="TRAINSET:ROLE",
        help="Supervisor override to apply after generation (repeatable).",
    )
    parser.add_argument("--supervisor", default="cli-supervisor", help="Name recorded on overrides.")
    parser.add_argument("--approve", metavar="APPROVER", help="Approve the plan as APPROVER.")
    parser.add_argument("--scenario", metavar="SCENARIO_ID", help="Run a preset what-if scenario.")
    parser.add_argument("--list-scenarios", action="store_true", help="List preset scenarios and exit.")
    args = parser.parse_args()

    service = InductionService(DemoSnapshotSource())

    if args.list_scenarios:
        for scenario in service.get_available_scenarios():
            print(f"{scenario.id}  {scenario.name}: {scenario.description}")
        return 0

    try:
        plan = service.generate_induction_plan(user="cli").plan
        for trainset_id, role in args.override:
            plan = service.apply_supervisor_override(
                plan.id, trainset_id, role, "Manual override from CLI", args.supervisor
            )
        if args.approve:
            plan = service.approve_plan(plan.id, args.approve)
        _print_plan(plan)

        if args.scenario:
            _print_simulation(service.run_what_if_simulation(scenario_id=args.scenario))
    except InductionError as exc:
        logging.error("planning failed: %s", exc.message)
        print(f"\nERROR [{exc.code}]: {exc.message}")
        return 1

    print("\n=== END ===\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
