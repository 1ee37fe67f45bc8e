"""Dependency injection module for FastAPI.

This module provides dependency injection functions for FastAPI routes. The
stores and the three access components are process-wide singletons, since
the lockout table, the single-flight table and the session registry must be
shared by every request.
"""

from typing import Annotated, Optional

from fastapi import Depends

from core.session_context import SessionRegistry
from utils.access_service import CourseAccessService
from utils.activity_log import ActivityLog
from utils.course_access import CourseAccessProjector
from utils.document_store import SqlDocumentStore
from utils.enrollment_resolver import EnrollmentResolver
from utils.identity_store import SqlIdentityStore
from utils.session_gatekeeper import SessionGatekeeper

_document_store: Optional[SqlDocumentStore] = None
_identity_store: Optional[SqlIdentityStore] = None
_session_registry: Optional[SessionRegistry] = None
_activity_log: Optional[ActivityLog] = None
_gatekeeper: Optional[SessionGatekeeper] = None
_enrollment_resolver: Optional[EnrollmentResolver] = None
_course_projector: Optional[CourseAccessProjector] = None
_access_service: Optional[CourseAccessService] = None


def get_document_store() -> SqlDocumentStore:
    global _document_store
    if _document_store is None:
        _document_store = SqlDocumentStore()
    return _document_store


def get_identity_store() -> SqlIdentityStore:
    global _identity_store
    if _identity_store is None:
        _identity_store = SqlIdentityStore()
    return _identity_store


def get_session_registry() -> SessionRegistry:
    global _session_registry
    if _session_registry is None:
        _session_registry = SessionRegistry()
    return _session_registry


def get_activity_log() -> ActivityLog:
    global _activity_log
    if _activity_log is None:
        _activity_log = ActivityLog(get_document_store())
    return _activity_log


def get_gatekeeper() -> SessionGatekeeper:
    """Get SessionGatekeeper singleton instance.

    Returns:
        SessionGatekeeper holding the process-wide lockout table.
    """
    global _gatekeeper
    if _gatekeeper is None:
        _gatekeeper = SessionGatekeeper(get_identity_store(), get_document_store())
    return _gatekeeper


def get_enrollment_resolver() -> EnrollmentResolver:
    """Get EnrollmentResolver singleton instance.

    Returns:
        EnrollmentResolver holding the process-wide single-flight table.
    """
    global _enrollment_resolver
    if _enrollment_resolver is None:
        _enrollment_resolver = EnrollmentResolver(
            get_document_store(), activity_log=get_activity_log()
        )
    return _enrollment_resolver


def get_course_projector() -> CourseAccessProjector:
    global _course_projector
    if _course_projector is None:
        _course_projector = CourseAccessProjector()
    return _course_projector


def get_access_service() -> CourseAccessService:
    global _access_service
    if _access_service is None:
        _access_service = CourseAccessService(
            get_enrollment_resolver(),
            get_course_projector(),
            get_session_registry(),
        )
    return _access_service


def reset_dependencies() -> None:
    """Drop every singleton so the next request builds fresh ones."""
    global _document_store, _identity_store, _session_registry, _activity_log
    global _gatekeeper, _enrollment_resolver, _course_projector, _access_service
    _document_store = None
    _identity_store = None
    _session_registry = None
    _activity_log = None
    _gatekeeper = None
    _enrollment_resolver = None
    _course_projector = None
    _access_service = None


# Type aliases for dependency injection
DocumentStoreDep = Annotated[SqlDocumentStore, Depends(get_document_store)]
IdentityStoreDep = Annotated[SqlIdentityStore, Depends(get_identity_store)]
SessionRegistryDep = Annotated[SessionRegistry, Depends(get_session_registry)]
ActivityLogDep = Annotated[ActivityLog, Depends(get_activity_log)]
GatekeeperDep = Annotated[SessionGatekeeper, Depends(get_gatekeeper)]
EnrollmentResolverDep = Annotated[EnrollmentResolver, Depends(get_enrollment_resolver)]
CourseProjectorDep = Annotated[CourseAccessProjector, Depends(get_course_projector)]
AccessServiceDep = Annotated[CourseAccessService, Depends(get_access_service)]
