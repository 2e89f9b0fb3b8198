#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Batch job that spawns the renewals of concluded requests that missed them.
"""

import sys
import os
import logging

# Add the parent directory to the path so we can import from api
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from observability.config import setup_observability
from services.engine import create_workflow_engine
from settings import WorkflowSettings

logger = logging.getLogger(__name__)


def main():
    """Reprocess pending renewals."""
    settings = WorkflowSettings.from_env()
    setup_observability(settings.environment)

    if not settings.uses_mongodb:
        logger.error("MONGODB_URI is not configured, nothing to reprocess")
        sys.exit(1)

    engine = create_workflow_engine(settings)
    result = engine.process_renewals()

    logger.info(
        "Renewal reprocessing finished",
        extra={"extra_fields": {
            "created": len(result.created),
            "closed": len(result.closed),
            "failed": result.failed
        }}
    )
    if result.failed:
        sys.exit(2)


if __name__ == "__main__":
    main()
