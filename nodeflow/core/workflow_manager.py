"""Workflow Manager for workflow definition handling."""

import asyncio
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from pydantic import ValidationError
from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..models.core import (
    Connection, Execution, Node, ValidationResult, Workflow, WorkflowStatus, WorkflowSummary
)
from ..storage.database import get_session_factory
from ..storage.models import WorkflowModel
from .exceptions import (
    GraphValidationError, PersistenceError, WorkflowEngineError,
    WorkflowNotActiveError, WorkflowNotFoundError
)
from .graph import TriggerClassifier, WorkflowGraph
from .handler_registry import NodeHandlerRegistry
from .logging import get_logger
from .orchestrator import Orchestrator

logger = get_logger(__name__)


class WorkflowManager:
    """Manages workflow definitions, validation, storage and execution requests."""

    def __init__(
        self,
        engine: Optional[Engine] = None,
        session_factory: Optional[sessionmaker] = None,
        orchestrator: Optional[Orchestrator] = None,
        registry: Optional[NodeHandlerRegistry] = None,
        trigger_classifier: Optional[TriggerClassifier] = None
    ):
        """Initialize WorkflowManager.

        Args:
            engine: Engine holding the ``workflows`` table; the global engine when omitted
            session_factory: Explicit session factory, overriding ``engine``
            orchestrator: Orchestrator used by ``execute_workflow``
            registry: Registry consulted to warn about unknown node types
            trigger_classifier: Entry-node rule used when building graphs
        """
        self._session_factory = session_factory or get_session_factory(engine)
        self.orchestrator = orchestrator
        self.registry = registry or (orchestrator.registry if orchestrator else None)
        self.trigger_classifier = trigger_classifier

    def create_workflow(
        self,
        name: str,
        nodes: Optional[Iterable[Any]] = None,
        connections: Optional[Iterable[Any]] = None,
        description: str = "",
        status: WorkflowStatus = WorkflowStatus.DRAFT
    ) -> Workflow:
        """
        Create and store a new workflow definition.

        Args:
            name: Workflow name
            nodes: Nodes, as models or editor-shaped dicts
            connections: Connections, as models or dicts
            description: Free-text description
            status: Initial lifecycle status

        Returns:
            Workflow: The stored workflow, version 1

        Raises:
            GraphValidationError: If the definition is invalid
            PersistenceError: If storage operation fails
        """
        logger.info(f"Creating new workflow: {name}")

        now = datetime.utcnow()
        workflow = self._build_workflow(
            id=str(uuid.uuid4()),
            name=name,
            description=description,
            nodes=list(nodes or []),
            connections=list(connections or []),
            status=status,
            version=1,
            created_at=now,
            updated_at=now
        )
        self._check_valid(workflow)

        db = self._session_factory()
        try:
            db.add(WorkflowModel(
                id=workflow.id,
                name=workflow.name,
                description=workflow.description,
                nodes=[node.model_dump(mode="json") for node in workflow.nodes],
                connections=[connection.model_dump(mode="json") for connection in workflow.connections],
                status=workflow.status.value,
                version=workflow.version,
                created_at=workflow.created_at,
                updated_at=workflow.updated_at
            ))
            db.commit()
            logger.info(f"Successfully created workflow '{workflow.name}' with ID: {workflow.id}")
            return workflow
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Database error while creating workflow: {str(e)}")
            raise PersistenceError(f"Failed to store workflow: {str(e)}", operation="create_workflow", table="workflows") from e
        finally:
            db.close()

    def get_workflow(self, workflow_id: str) -> Workflow:
        """
        Retrieve a workflow definition by its ID.

        Raises:
            WorkflowNotFoundError: If no workflow has this ID
            PersistenceError: If storage operation fails
        """
        logger.debug(f"Retrieving workflow with ID: {workflow_id}")

        db = self._session_factory()
        try:
            model = db.query(WorkflowModel).filter(WorkflowModel.id == workflow_id).first()
            if not model:
                raise WorkflowNotFoundError(workflow_id)
            return self._to_workflow(model)
        except SQLAlchemyError as e:
            logger.error(f"Database error while retrieving workflow: {str(e)}")
            raise PersistenceError(f"Failed to retrieve workflow: {str(e)}", operation="get_workflow", table="workflows") from e
        finally:
            db.close()

    def list_workflows(self, status: Optional[WorkflowStatus] = None) -> List[WorkflowSummary]:
        """
        List stored workflows, newest first.

        Args:
            status: Only include workflows with this status

        Returns:
            List[WorkflowSummary]: Workflow summaries
        """
        db = self._session_factory()
        try:
            query = db.query(WorkflowModel)
            if status is not None:
                query = query.filter(WorkflowModel.status == WorkflowStatus(status).value)
            models = query.order_by(WorkflowModel.created_at.desc()).all()

            summaries = [
                WorkflowSummary(
                    id=model.id,
                    name=model.name,
                    status=WorkflowStatus(model.status),
                    version=model.version,
                    node_count=len(model.nodes or []),
                    created_at=model.created_at
                )
                for model in models
            ]
            logger.debug(f"Retrieved {len(summaries)} workflow summaries")
            return summaries
        except SQLAlchemyError as e:
            logger.error(f"Database error while listing workflows: {str(e)}")
            raise PersistenceError(f"Failed to list workflows: {str(e)}", operation="list_workflows", table="workflows") from e
        finally:
            db.close()

    def update_workflow(
        self,
        workflow_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        nodes: Optional[Iterable[Any]] = None,
        connections: Optional[Iterable[Any]] = None
    ) -> Workflow:
        """
        Update a workflow and bump its version.

        Nodes and connections are replaced as a whole when given.

        Raises:
            WorkflowNotFoundError: If no workflow has this ID
            GraphValidationError: If the updated definition is invalid
            PersistenceError: If storage operation fails
        """
        logger.info(f"Updating workflow with ID: {workflow_id}")

        db = self._session_factory()
        try:
            model = db.query(WorkflowModel).filter(WorkflowModel.id == workflow_id).first()
            if not model:
                raise WorkflowNotFoundError(workflow_id)

            current = self._to_workflow(model)
            workflow = self._build_workflow(
                id=current.id,
                name=name if name is not None else current.name,
                description=description if description is not None else current.description,
                nodes=list(nodes) if nodes is not None else current.nodes,
                connections=list(connections) if connections is not None else current.connections,
                status=current.status,
                version=current.version + 1,
                created_at=current.created_at,
                updated_at=datetime.utcnow()
            )
            self._check_valid(workflow)

            model.name = workflow.name
            model.description = workflow.description
            model.nodes = [node.model_dump(mode="json") for node in workflow.nodes]
            model.connections = [connection.model_dump(mode="json") for connection in workflow.connections]
            model.version = workflow.version
            model.updated_at = workflow.updated_at
            db.commit()

            logger.info(f"Workflow {workflow_id} updated to version {workflow.version}")
            return workflow
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Database error while updating workflow: {str(e)}")
            raise PersistenceError(f"Failed to update workflow: {str(e)}", operation="update_workflow", table="workflows") from e
        finally:
            db.close()

    def set_status(self, workflow_id: str, status: WorkflowStatus) -> Workflow:
        """Change a workflow's lifecycle status without bumping its version."""
        status = WorkflowStatus(status)
        db = self._session_factory()
        try:
            model = db.query(WorkflowModel).filter(WorkflowModel.id == workflow_id).first()
            if not model:
                raise WorkflowNotFoundError(workflow_id)
            model.status = status.value
            model.updated_at = datetime.utcnow()
            db.commit()
            db.refresh(model)
            logger.info(f"Workflow {workflow_id} is now {status.value}")
            return self._to_workflow(model)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Database error while updating workflow status: {str(e)}")
            raise PersistenceError(f"Failed to update workflow status: {str(e)}", operation="set_status", table="workflows") from e
        finally:
            db.close()

    def delete_workflow(self, workflow_id: str) -> bool:
        """
        Delete a workflow by its ID.

        Returns:
            bool: True if the workflow was deleted, False if not found
        """
        logger.info(f"Deleting workflow with ID: {workflow_id}")

        db = self._session_factory()
        try:
            model = db.query(WorkflowModel).filter(WorkflowModel.id == workflow_id).first()
            if not model:
                logger.warning(f"Workflow with ID '{workflow_id}' not found for deletion")
                return False
            db.delete(model)
            db.commit()
            logger.info(f"Successfully deleted workflow with ID: {workflow_id}")
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Database error while deleting workflow: {str(e)}")
            raise PersistenceError(f"Failed to delete workflow: {str(e)}", operation="delete_workflow", table="workflows") from e
        finally:
            db.close()

    def validate_workflow(self, workflow: Workflow) -> ValidationResult:
        """
        Check a workflow for problems that would surface at execution time.

        Structural problems are errors. Missing entry nodes, cycles, node
        types with no registered handler and nodes unreachable from any entry
        node are warnings, since a draft may legitimately be incomplete.
        """
        errors: List[str] = []
        warnings: List[str] = []

        try:
            graph = WorkflowGraph.from_workflow(workflow, self.trigger_classifier)
        except GraphValidationError as e:
            return ValidationResult(is_valid=False, errors=e.validation_errors or [e.message], warnings=[])

        entry_nodes = graph.entry_nodes()
        if not entry_nodes:
            warnings.append("Workflow has no trigger node and cannot be executed")

        if graph.has_cycle():
            warnings.append("Workflow contains a cycle; executions reaching it will be rejected")

        if self.registry is not None:
            unknown = sorted({node.type for node in graph.nodes if not self.registry.is_registered(node.type)})
            if unknown:
                warnings.append(f"No handler registered for node types: {', '.join(unknown)}")

        fed_triggers = [node.id for node in entry_nodes if graph.upstream_of(node.id)]
        if fed_triggers:
            warnings.append(f"Trigger nodes with incoming connections also run mid-flow: {', '.join(fed_triggers)}")

        if entry_nodes:
            unreachable = {node.id for node in graph.nodes} - self._reachable(graph, entry_nodes)
            if unreachable:
                warnings.append(f"Nodes unreachable from any trigger: {', '.join(sorted(unreachable))}")

        result = ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)
        logger.debug(f"Workflow validation completed. Valid: {result.is_valid}, "
                     f"Errors: {len(result.errors)}, Warnings: {len(result.warnings)}")
        return result

    def build_graph(self, workflow_id: str) -> WorkflowGraph:
        """
        Load an active workflow and build its execution graph.

        Raises:
            WorkflowNotFoundError: If no workflow has this ID
            WorkflowNotActiveError: If the workflow is not active
        """
        workflow = self.get_workflow(workflow_id)
        if workflow.status != WorkflowStatus.ACTIVE:
            raise WorkflowNotActiveError(workflow_id, workflow.status.value)
        return WorkflowGraph.from_workflow(workflow, self.trigger_classifier)

    async def execute_workflow(self, workflow_id: str, input_data: Any = None) -> Execution:
        """
        Execute an active workflow and wait for its terminal record.

        Raises:
            WorkflowNotFoundError: If no workflow has this ID
            WorkflowNotActiveError: If the workflow is not active
            WorkflowEngineError: Whatever ended a failed execution
        """
        if self.orchestrator is None:
            raise WorkflowEngineError("WorkflowManager has no orchestrator configured")
        graph = await asyncio.to_thread(self.build_graph, workflow_id)
        return await self.orchestrator.execute(graph, input_data)

    async def list_executions(self, workflow_id: str, limit: int = 50) -> List[Execution]:
        """Recent executions of a workflow, newest first."""
        if self.orchestrator is None:
            raise WorkflowEngineError("WorkflowManager has no orchestrator configured")
        return await self.orchestrator.record_store.list_executions(workflow_id, limit=limit)

    def _build_workflow(self, **fields) -> Workflow:
        try:
            return Workflow(**fields)
        except ValidationError as e:
            messages = [error["msg"] for error in e.errors()]
            logger.error(f"Workflow definition rejected: {messages}")
            raise GraphValidationError(
                f"Workflow validation failed: {'; '.join(messages)}",
                validation_errors=messages,
                workflow_id=fields.get("id")
            ) from e

    def _check_valid(self, workflow: Workflow) -> None:
        result = self.validate_workflow(workflow)
        if not result.is_valid:
            error_msg = f"Workflow validation failed: {'; '.join(result.errors)}"
            logger.error(error_msg)
            raise GraphValidationError(error_msg, validation_errors=result.errors, workflow_id=workflow.id)
        if result.warnings:
            logger.warning(f"Workflow validation warnings: {'; '.join(result.warnings)}")

    @staticmethod
    def _reachable(graph: WorkflowGraph, entry_nodes: List[Node]) -> Set[str]:
        seen: Set[str] = set()
        stack = [node.id for node in entry_nodes]
        while stack:
            node_id = stack.pop()
            if node_id in seen:
                continue
            seen.add(node_id)
            stack.extend(child.id for child in graph.downstream_of(node_id))
        return seen

    @staticmethod
    def _to_workflow(model: WorkflowModel) -> Workflow:
        nodes: List[Dict[str, Any]] = model.nodes or []
        connections: List[Dict[str, Any]] = model.connections or []
        return Workflow(
            id=model.id,
            name=model.name,
            description=model.description or "",
            nodes=[Node(**node) for node in nodes],
            connections=[Connection(**connection) for connection in connections],
            status=WorkflowStatus(model.status),
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at
        )
