# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Services package - Workflow orchestration, persistence and notification.
"""

from .repository import WorkflowRepository, InMemoryWorkflowRepository
from .mongodb import MongoDBService, MongoWorkflowRepository
from .amqp import AMQPConfig, AMQPNotifier, LoggingNotifier, Notifier, PublishResult, create_notifier
from .state_machine import RequestStateMachine
from .pendencies import PendencyTracker
from .approvals import ApprovalCoordinator
from .judicial import JudicialOverrideHandler
from .payments import PaymentService
from .health import HealthCheckService
from .renewal import RenewalScheduler, RenewalBatchResult
from .engine import WorkflowEngine, create_workflow_engine

__all__ = [
    "WorkflowRepository",
    "InMemoryWorkflowRepository",
    "MongoDBService",
    "MongoWorkflowRepository",
    "AMQPConfig",
    "AMQPNotifier",
    "LoggingNotifier",
    "Notifier",
    "PublishResult",
    "create_notifier",
    "RequestStateMachine",
    "PendencyTracker",
    "ApprovalCoordinator",
    "JudicialOverrideHandler",
    "PaymentService",
    "RenewalScheduler",
    "RenewalBatchResult",
    "HealthCheckService",
    "WorkflowEngine",
    "create_workflow_engine"
]
