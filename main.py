#!/usr/bin/env python3
"""
ThreatMap -- command-line risk calculator.

Scores a single (probability, impact) pair with the same scorer the API uses.
No database, no network.

Usage:
  python main.py 0.8 8
  python main.py 0.8 8 --residual 0.5
  python main.py 0.3 5 --json

Exit status: 0 on success, 2 when the input is out of range or not a number.
"""

import argparse
import json
from typing import Optional

from core import scoring
from core.errors import ValidationError
from posture.risks import calculate

_LEVEL_MARKERS = {"critical": "!!!", "high": "!!", "medium": "!", "low": "-"}


def _print_terminal(result: dict, residual: Optional[dict]) -> None:
    marker = _LEVEL_MARKERS.get(result["risk_level"], "")
    print("\nThreatMap -- Risk Calculation")
    print("─" * 40)
    print(f"  Probability : {result['probability']}")
    print(f"  Impact      : {result['impact']}")
    print(f"  Score       : {result['risk_score']:.2f} / 100")
    print(f"  Level       : {result['risk_level'].upper()} {marker}")
    print(f"  {result['description']}")
    if residual is not None:
        after = residual["residual"]
        reduction = residual["reduction"]
        print("\n  After treatment")
        print(f"  Probability : {after['probability']}  (-{reduction['probability']})")
        print(f"  Impact      : {after['impact']}  (-{reduction['impact']})")
        print(f"  Score       : {after['risk_score']:.2f} / 100  (-{reduction['score']})")
        print(f"  Level       : {after['risk_level'].upper()}")
    print()


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="threatmap",
        description="Score a risk from its probability (0-1) and impact (1-10).",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Levels:
  critical  score >= 50
  high      score >= 30
  medium    score >= 15
  low       below 15

Examples:
  python main.py 0.8 8
  python main.py 0.8 8 --residual 0.5
  python main.py 0.3 5 --json
        """,
    )
    parser.add_argument("probability", help="Likelihood between 0 and 1")
    parser.add_argument("impact", help="Whole-number impact between 1 and 10")
    parser.add_argument(
        "--residual",
        type=float,
        metavar="FACTOR",
        default=None,
        help="Also show the residual risk after a treatment that reduces it by FACTOR (0-1)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output structured JSON",
    )
    args = parser.parse_args(argv)

    try:
        result = calculate({"probability": args.probability, "impact": args.impact})
        residual = None
        if args.residual is not None:
            residual = scoring.residual_risk(result["probability"], result["impact"], args.residual)
    except ValidationError as exc:
        print(f"  [!] {exc.message}")
        for err in exc.errors:
            print(f"      {err['field']}: {err['message']}")
        return 2

    if args.json:
        payload = dict(result)
        if residual is not None:
            payload["residual"] = residual["residual"]
            payload["reduction"] = residual["reduction"]
        print(json.dumps(payload, indent=2))
    else:
        _print_terminal(result, residual)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
