import json
import logging
from functools import wraps
from typing import Any, Dict

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError
from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt

from .errors import Conflict, WorkflowError
from .models import Problem
from .problems import ProblemCatalog
from .remotes import DefaultRemoteEngine
from .schemas import validate_payload
from .serializers import (
    DiagnosticSessionSerializer,
    DiagnosticStepSerializer,
    ProblemSerializer,
    RemoteSerializer,
)
from .sessions import SessionLifecycleEngine
from .steps import StepOrderingEngine
from .store import Store

logger = logging.getLogger(__name__)


def _parse_json(request: HttpRequest) -> Dict[str, Any]:
    if request.body:
        try:
            return json.loads(request.body.decode("utf-8"))
        except json.JSONDecodeError:
            return {}
    return {}


def _flag(request: HttpRequest, name: str) -> bool:
    return str(request.GET.get(name, "")).strip().lower() in {"1", "true", "yes"}


def _method_not_allowed() -> JsonResponse:
    return JsonResponse({"error": "method not allowed"}, status=405)


def workflow_view(view):
    """Map engine errors onto JSON error responses."""

    @csrf_exempt
    @wraps(view)
    def wrapper(request: HttpRequest, *args, **kwargs) -> JsonResponse:
        try:
            return view(request, *args, **kwargs)
        except WorkflowError as exc:
            return JsonResponse(exc.as_dict(), status=exc.status_code)
        except DjangoValidationError as exc:
            # Malformed identifiers in a payload.
            return JsonResponse({"error": "; ".join(exc.messages), "kind": "validation_error"}, status=400)
        except IntegrityError as exc:
            logger.warning("Constraint violation on %s %s: %s", request.method, request.path, exc)
            conflict = Conflict("The change conflicts with existing data", details={"reason": str(exc)})
            return JsonResponse(conflict.as_dict(), status=conflict.status_code)

    return wrapper


# -- problems --------------------------------------------------------------


@workflow_view
def device_problems(request: HttpRequest, device_id: str) -> JsonResponse:
    if request.method == "POST":
        payload = validate_payload(_parse_json(request), "problem.create")
        problem = ProblemCatalog(Store()).create_problem(device_id, payload)
        return JsonResponse(ProblemSerializer(problem).data, status=201)
    if request.method != "GET":
        return _method_not_allowed()
    qs = Problem.objects.filter(device_id=device_id, is_active=True)
    if status := request.GET.get("status"):
        qs = qs.filter(status=status)
    return JsonResponse({"problems": ProblemSerializer(qs, many=True).data})


@workflow_view
def problem_detail(request: HttpRequest, problem_id: str) -> JsonResponse:
    catalog = ProblemCatalog(Store())
    if request.method == "PATCH":
        payload = validate_payload(_parse_json(request), "problem.update")
        problem = catalog.update_problem(problem_id, payload)
        return JsonResponse(ProblemSerializer(problem).data)
    if request.method == "DELETE":
        if _flag(request, "purge"):
            catalog.purge_problem(problem_id)
            return JsonResponse({"status": "purged"})
        problem = catalog.archive_problem(problem_id)
        return JsonResponse({"status": "archived", "problem": ProblemSerializer(problem).data})
    if request.method != "GET":
        return _method_not_allowed()
    return JsonResponse(ProblemSerializer(catalog.get_problem(problem_id)).data)


@workflow_view
def problem_restore(request: HttpRequest, problem_id: str) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    problem = ProblemCatalog(Store()).restore_problem(problem_id)
    return JsonResponse(ProblemSerializer(problem).data)


@workflow_view
def problem_publish(request: HttpRequest, problem_id: str) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    problem = ProblemCatalog(Store()).publish(problem_id)
    return JsonResponse(ProblemSerializer(problem).data)


@workflow_view
def problem_unpublish(request: HttpRequest, problem_id: str) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    problem = ProblemCatalog(Store()).unpublish(problem_id)
    return JsonResponse(ProblemSerializer(problem).data)


# -- steps -----------------------------------------------------------------


@workflow_view
def problem_steps(request: HttpRequest, problem_id: str) -> JsonResponse:
    engine = StepOrderingEngine(Store())
    if request.method == "POST":
        payload = validate_payload(_parse_json(request), "step.create")
        step = engine.create_step(problem_id, payload, step_number=payload.get("step_number"))
        return JsonResponse(DiagnosticStepSerializer(step).data, status=201)
    if request.method != "GET":
        return _method_not_allowed()
    steps = engine.list_steps(problem_id)
    return JsonResponse({"problem_id": str(problem_id), "steps": DiagnosticStepSerializer(steps, many=True).data})


@workflow_view
def steps_insert(request: HttpRequest) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    payload = validate_payload(_parse_json(request), "step.insert")
    step = StepOrderingEngine(Store()).insert_step_after(payload["problem_id"], payload["after_number"], payload["step"])
    return JsonResponse(DiagnosticStepSerializer(step).data, status=201)


@workflow_view
def steps_reorder(request: HttpRequest) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    payload = validate_payload(_parse_json(request), "step.reorder")
    steps = StepOrderingEngine(Store()).reorder_steps(payload["problem_id"], payload["step_ids"])
    return JsonResponse({"problem_id": payload["problem_id"], "steps": DiagnosticStepSerializer(steps, many=True).data})


@workflow_view
def steps_fix_numbering(request: HttpRequest) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    payload = validate_payload(_parse_json(request), "step.fix_numbering")
    moved = StepOrderingEngine(Store()).fix_step_numbering(payload["problem_id"])
    return JsonResponse(
        {
            "problem_id": payload["problem_id"],
            "renumbered": len(moved),
            "steps": DiagnosticStepSerializer(moved, many=True).data,
        }
    )


@workflow_view
def steps_validate(request: HttpRequest) -> JsonResponse:
    if request.method != "GET":
        return _method_not_allowed()
    problem_id = request.GET.get("problem_id")
    if not problem_id:
        return JsonResponse({"error": "problem_id is required", "kind": "validation_error"}, status=400)
    report = StepOrderingEngine(Store()).validate_step_order(problem_id)
    return JsonResponse(report.as_dict())


@workflow_view
def step_detail(request: HttpRequest, step_id: str) -> JsonResponse:
    engine = StepOrderingEngine(Store())
    if request.method == "DELETE":
        step = engine.delete_step_with_reorder(step_id, force=_flag(request, "force"))
        return JsonResponse({"status": "archived", "step": DiagnosticStepSerializer(step).data})
    if request.method != "GET":
        return _method_not_allowed()
    return JsonResponse(DiagnosticStepSerializer(engine.get_step(step_id)).data)


@workflow_view
def step_restore(request: HttpRequest, step_id: str) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    step = StepOrderingEngine(Store()).restore_step(step_id)
    return JsonResponse(DiagnosticStepSerializer(step).data)


@workflow_view
def step_duplicate(request: HttpRequest, step_id: str) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    payload = validate_payload(_parse_json(request), "step.duplicate")
    step = StepOrderingEngine(Store()).duplicate_step(step_id, target_problem_id=payload.get("problem_id"))
    return JsonResponse(DiagnosticStepSerializer(step).data, status=201)


@workflow_view
def step_next(request: HttpRequest, step_id: str) -> JsonResponse:
    if request.method != "GET":
        return _method_not_allowed()
    step = StepOrderingEngine(Store()).get_next_step(step_id)
    return JsonResponse({"step": DiagnosticStepSerializer(step).data if step else None})


@workflow_view
def step_previous(request: HttpRequest, step_id: str) -> JsonResponse:
    if request.method != "GET":
        return _method_not_allowed()
    step = StepOrderingEngine(Store()).get_previous_step(step_id)
    return JsonResponse({"step": DiagnosticStepSerializer(step).data if step else None})


# -- sessions --------------------------------------------------------------


@workflow_view
def sessions_collection(request: HttpRequest) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    payload = validate_payload(_parse_json(request), "session.create")
    session = SessionLifecycleEngine(Store()).create_session(
        payload["device_id"],
        payload["problem_id"],
        session_key=payload.get("session_id") or "",
        metadata=payload.get("metadata"),
    )
    return JsonResponse(DiagnosticSessionSerializer(session).data, status=201)


@workflow_view
def session_detail(request: HttpRequest, session_id: str) -> JsonResponse:
    engine = SessionLifecycleEngine(Store())
    if request.method == "PATCH":
        payload = validate_payload(_parse_json(request), "session.update")
        force = bool(payload.pop("force", False))
        session = engine.update_session(session_id, payload, force=force)
        return JsonResponse(DiagnosticSessionSerializer(session).data)
    if request.method == "DELETE":
        session = engine.delete_session(session_id, force=_flag(request, "force"))
        return JsonResponse({"status": "archived", "session_id": str(session.id)})
    if request.method != "GET":
        return _method_not_allowed()
    return JsonResponse(DiagnosticSessionSerializer(engine.get_session(session_id)).data)


@workflow_view
def session_progress(request: HttpRequest, session_id: str) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    payload = validate_payload(_parse_json(request), "session.progress")
    session = SessionLifecycleEngine(Store()).update_progress(
        session_id,
        payload["step_id"],
        payload,
        force=bool(payload.get("force", False)),
    )
    return JsonResponse(DiagnosticSessionSerializer(session).data)


@workflow_view
def session_complete(request: HttpRequest, session_id: str) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    payload = validate_payload(_parse_json(request), "session.complete")
    session = SessionLifecycleEngine(Store()).complete_session(
        session_id,
        payload["success"],
        error_steps=payload.get("error_steps"),
        feedback=payload.get("feedback"),
    )
    return JsonResponse(DiagnosticSessionSerializer(session).data)


@workflow_view
def session_restore(request: HttpRequest, session_id: str) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    session = SessionLifecycleEngine(Store()).restore_session(session_id)
    return JsonResponse(DiagnosticSessionSerializer(session).data)


# -- remotes ---------------------------------------------------------------


@workflow_view
def remotes_collection(request: HttpRequest) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    payload = validate_payload(_parse_json(request), "remote.create")
    remote = DefaultRemoteEngine(Store()).create_remote(payload)
    return JsonResponse(RemoteSerializer(remote).data, status=201)


@workflow_view
def remote_detail(request: HttpRequest, remote_id: str) -> JsonResponse:
    engine = DefaultRemoteEngine(Store())
    if request.method == "PATCH":
        payload = validate_payload(_parse_json(request), "remote.update")
        remote = engine.update_remote(remote_id, payload)
        return JsonResponse(RemoteSerializer(remote).data)
    if request.method == "DELETE":
        remote = engine.delete_remote(remote_id)
        return JsonResponse({"status": "archived", "remote_id": str(remote.id)})
    if request.method != "GET":
        return _method_not_allowed()
    return JsonResponse(RemoteSerializer(engine.get_remote(remote_id)).data)


@workflow_view
def remote_set_default(request: HttpRequest, remote_id: str) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    payload = validate_payload(_parse_json(request), "remote.set_default")
    remote = DefaultRemoteEngine(Store()).set_as_default(remote_id, payload["device_id"])
    return JsonResponse(RemoteSerializer(remote).data)


@workflow_view
def remote_duplicate(request: HttpRequest, remote_id: str) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    payload = validate_payload(_parse_json(request), "remote.update")
    remote = DefaultRemoteEngine(Store()).duplicate_remote(remote_id, payload)
    return JsonResponse(RemoteSerializer(remote).data, status=201)


@workflow_view
def remote_use(request: HttpRequest, remote_id: str) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    remote = DefaultRemoteEngine(Store()).increment_usage(remote_id)
    return JsonResponse(RemoteSerializer(remote).data)


@workflow_view
def device_default_remote(request: HttpRequest, device_id: str) -> JsonResponse:
    if request.method != "GET":
        return _method_not_allowed()
    remote = DefaultRemoteEngine(Store()).get_default_for_device(device_id)
    return JsonResponse(RemoteSerializer(remote).data)
