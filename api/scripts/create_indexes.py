#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Create the MongoDB indexes the workflow relies on.

The unique indexes on protocolo, on solicitacao_original_id and on the
request of each payment back the repository's duplicate checks, so this must
run before the engine serves writes against a fresh database.
"""

import sys
import os
import logging

# Add the parent directory to the path so we can import from api
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pymongo.errors import PyMongoError

from observability.config import setup_structured_logging
from services.mongodb import WORKFLOW_COLLECTIONS, MongoDBService
from settings import WorkflowSettings

logger = logging.getLogger(__name__)


def describe_indexes(mongodb_service: MongoDBService) -> dict:
    """Index names per workflow collection, flagging the unique ones."""
    summary = {}
    for name in WORKFLOW_COLLECTIONS:
        info = mongodb_service.get_collection(name).index_information()
        summary[name] = sorted(
            f"{index}{' (unique)' if spec.get('unique') else ''}" for index, spec in info.items()
        )
    return summary


def main():
    """Create and report the workflow indexes."""
    settings = WorkflowSettings.from_env()
    setup_structured_logging(settings.environment)

    if not settings.uses_mongodb:
        logger.error("MONGODB_URI is not configured, no database to index")
        sys.exit(1)

    mongodb_service = MongoDBService(settings.mongodb_uri, settings.mongodb_database)
    try:
        health = mongodb_service.health_check()
        if health["status"] != "healthy":
            logger.error(
                "Workflow database unreachable, indexes not created",
                extra={"extra_fields": {"database": settings.mongodb_database, "error": health.get("error")}}
            )
            sys.exit(1)

        mongodb_service.create_indexes()
        logger.info(
            "Workflow indexes ready",
            extra={"extra_fields": {
                "database": settings.mongodb_database,
                "mongodb_version": health.get("version"),
                "indexes": describe_indexes(mongodb_service)
            }}
        )
    except PyMongoError as e:
        logger.error(
            f"Index creation on {settings.mongodb_database} failed: {e}",
            extra={"extra_fields": {"database": settings.mongodb_database}}
        )
        sys.exit(1)
    finally:
        mongodb_service.close_connection()


if __name__ == "__main__":
    main()
