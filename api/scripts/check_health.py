#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Print the health report of the workflow engine dependencies as JSON.

Exits 0 when healthy, 1 when degraded and 2 when unhealthy, so orchestrators
can use it as a container health check.
"""

import sys
import os
import json

# Add the parent directory to the path so we can import from api
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from observability.config import setup_structured_logging
from services.engine import create_workflow_engine
from settings import WorkflowSettings

EXIT_CODES = {"healthy": 0, "degraded": 1, "unhealthy": 2}


def main():
    """Report dependency health."""
    settings = WorkflowSettings.from_env()
    setup_structured_logging(settings.environment)

    report = create_workflow_engine(settings).health()
    print(json.dumps(report, indent=2, default=str))
    sys.exit(EXIT_CODES.get(report["status"], 2))


if __name__ == "__main__":
    main()
