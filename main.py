#!/usr/bin/env python3
"""IFC-CPU Command Line Interface.

Check noninterference of the labeled-register processor.

Usage:
    python main.py --mode inductive
    python main.py --mode replay --program exploit.steps --vulnerable
    python main.py --mode random --runs 500 --seed 7
"""

import argparse
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from ifc_cpu import DifferentialOracle, InvalidOperand, PropertyEvaluator, Verdict
from ifc_cpu.decode import decode_instruction, parse_steps

EXIT_CODES = {
    Verdict.PASS: 0,
    Verdict.FAIL: 1,
    Verdict.INCONCLUSIVE: 2,
}


def main():
    parser = argparse.ArgumentParser(
        description="IFC-CPU: Differential Noninterference Checker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Prove the invariant is inductive for every instruction
    python main.py --mode inductive

    # Replay the implicit-flow exploit against the vulnerable skip policy
    python main.py --mode replay --vulnerable --trace \\
        --inline "1 0 0 SkipNext InputHigh; 1 0 0 Not Zero OutputLow; 1 0 0 Copy Zero OutputLow"

    # Exhaustive search over a small alphabet
    python main.py --mode exhaustive --alphabet "SkipNext InputHigh; Not Zero OutputLow"

Step format: <high1> <high2> <low> <Opcode> <operands...>
        """
    )

    parser.add_argument(
        "--mode", "-m",
        choices=["exhaustive", "random", "replay", "inductive"],
        default="inductive",
        help="Driver mode. Default: inductive"
    )
    parser.add_argument(
        "--program", "-p",
        type=str,
        help="Path to a step program (replay mode)"
    )
    parser.add_argument(
        "--inline", "-i",
        type=str,
        help="Inline steps for replay (separate steps with ;)"
    )
    parser.add_argument(
        "--alphabet", "-a",
        type=str,
        help="Instruction alphabet for exhaustive/random/inductive (separate with ;). "
             "Default: every instruction"
    )
    parser.add_argument(
        "--horizon",
        type=int,
        default=PropertyEvaluator.DEFAULT_HORIZON,
        help=f"Step budget per sequence. Default: {PropertyEvaluator.DEFAULT_HORIZON}"
    )
    parser.add_argument(
        "--runs",
        type=int,
        default=PropertyEvaluator.DEFAULT_RUNS,
        help=f"Random runs. Default: {PropertyEvaluator.DEFAULT_RUNS}"
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for random mode"
    )
    parser.add_argument(
        "--vulnerable",
        action="store_true",
        help="Let SkipNext arm the hazard flag (known implicit flow)"
    )
    parser.add_argument(
        "--trace", "-t",
        action="store_true",
        help="Print the lockstep trace of the counterexample or replay"
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Print the verdict only"
    )

    args = parser.parse_args()

    if args.mode == "replay" and not args.program and not args.inline:
        parser.error("replay mode requires --program or --inline")

    evaluator = PropertyEvaluator(
        arm_skip=args.vulnerable,
        horizon=args.horizon,
        seed=args.seed
    )

    steps = None
    try:
        alphabet = None
        if args.alphabet:
            alphabet = [
                decode_instruction(part)
                for part in args.alphabet.split(";")
                if part.strip()
            ]

        if args.mode == "replay":
            if args.program:
                program_path = Path(args.program)
                if not program_path.exists():
                    print(f"Error: Program file not found: {args.program}")
                    return 1
                source = program_path.read_text()
            else:
                source = args.inline.replace(";", "\n")
            steps = parse_steps(source)
            report = evaluator.replay(steps)
        elif args.mode == "exhaustive":
            report = evaluator.exhaustive(instructions=alphabet)
        elif args.mode == "random":
            report = evaluator.random(runs=args.runs, instructions=alphabet)
        else:
            report = evaluator.inductive(instructions=alphabet)
    except InvalidOperand as e:
        print(f"Error: {e}")
        return 1

    if args.quiet:
        print(report.verdict.value)
    else:
        print(report.summary())

    trace_steps = steps if steps is not None else report.counterexample
    if args.trace and trace_steps:
        if report.start is None:
            oracle = DifferentialOracle(arm_skip=args.vulnerable)
        else:
            oracle = DifferentialOracle.from_states(
                *report.start, arm_skip=args.vulnerable, check_start=False
            )
        for step_input in trace_steps:
            oracle.apply(step_input)
        print()
        oracle.print_trace()

    return EXIT_CODES[report.verdict]


if __name__ == "__main__":
    sys.exit(main())
