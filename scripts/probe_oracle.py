#!/usr/bin/env python3
"""Run the configured AI oracle against sample inputs and print what it returns."""
from __future__ import annotations

import sys

from civicwatch.config import settings
from civicwatch.infra.ai_oracle import GroqOracle, OracleError

SAMPLE_REPORT = ("Large pothole on Elm St, two cars already damaged their tyres.", "infrastructure")
SAMPLE_QUERY = "Which roads projects in the North District cost more than 1 million?"


def main() -> None:
    if not settings.groq_api_key:
        print("GROQ_API_KEY missing")
        return

    oracle = GroqOracle()
    print(f"model={oracle.model}")
    print(f"timeout={oracle.timeout}s")

    description, report_type = SAMPLE_REPORT
    if len(sys.argv) > 1:
        description = " ".join(sys.argv[1:])
    try:
        suggestion = oracle.suggest_report_labels(description, report_type)
        print(f"labels_ok=True category={suggestion.category} sentiment={suggestion.sentiment}")
    except OracleError as exc:
        print(f"labels_ok=False detail={exc}")

    try:
        filters = oracle.parse_transparency_query(SAMPLE_QUERY)
        print(f"query_ok=True filters={filters}")
    except OracleError as exc:
        print(f"query_ok=False detail={exc}")


if __name__ == "__main__":
    main()
