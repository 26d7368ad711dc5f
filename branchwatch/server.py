# branchwatch/server.py
from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Callable, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pydantic import ValidationError as SchemaError

from .access import (
    IncidentFilters,
    branch_health,
    can_see_branch,
    dashboard_summary,
    filter_branches,
    filter_incidents,
    resolve,
    search_branches,
)
from .accounts import AccountService
from .assembler import IncidentAssembler
from .classifier import ClassificationResult, Classifier, build_classifier, normalize_priority
from .errors import BranchwatchError, ClassificationError, PermissionDenied, RemoteServiceError, ValidationError
from .evidence import normalize_evidence
from .lifecycle import StatusTransitionManager, initial_status
from .llm.pricing import usage_cost
from .llm.settings import app_data_dir, get_settings, update_settings
from .llm.transcriber import Transcriber
from .media import MediaStore
from .models import Branch, EvidenceBundle, Identity, Incident, IncidentStatus, UserProfile
from .repository import BranchRepository, IncidentRepository, UserRepository
from .seed import seed_branches, seed_incidents
from .settings import IncidentSettingsStore, get_store
from .store import JsonFileStore, MemoryStore

logger = logging.getLogger(__name__)


def _default_llm() -> Any:
    from .llm.llm_provider import build_llm

    return build_llm()


class IncidentService:
    """
    Wires storage, classification and access scope together. Every method takes the
    resolved caller profile and enforces its branch scope before touching data.
    """

    def __init__(
        self,
        store: MemoryStore,
        settings_store: IncidentSettingsStore,
        media: MediaStore,
        classifier_factory: Optional[Callable[[], Classifier]] = None,
        transcriber_factory: Optional[Callable[[], Transcriber]] = None,
    ) -> None:
        self.store = store
        self.settings_store = settings_store
        self.media = media

        self.branches = BranchRepository(store)
        self.incidents = IncidentRepository(store)
        self.users = UserRepository(store)

        self.accounts = AccountService(self.users, self.branches)
        self.assembler = IncidentAssembler(self.branches, settings_store.load)
        self.lifecycle = StatusTransitionManager(self.incidents)

        # built per call so provider changes in the LLM settings apply immediately
        self._classifier_factory = classifier_factory or (lambda: build_classifier(media=self.media))
        self._transcriber_factory = transcriber_factory or (lambda: Transcriber(_default_llm, self.media))

    # ----------------------------
    # Seeding
    # ----------------------------
    def seed(self, with_samples: bool = False) -> Dict[str, int]:
        out = {"branches": seed_branches(self.branches), "incidents": 0}
        if with_samples:
            out["incidents"] = seed_incidents(self.branches, self.incidents, self.assembler)
        return out

    # ----------------------------
    # Branches
    # ----------------------------
    def visible_branches(self, actor: UserProfile) -> List[Branch]:
        return resolve(actor, self.branches.list_all())

    def require_branch(self, actor: UserProfile, branch_id: str) -> Branch:
        branch = self.branches.get(branch_id)
        if not can_see_branch(actor, branch_id, [branch]):
            raise PermissionDenied(f"You do not have access to branch {branch_id}.")
        return branch

    def list_branches(
        self,
        actor: UserProfile,
        brand: Optional[str] = None,
        region: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[Branch]:
        branches = filter_branches(self.visible_branches(actor), brand=brand, region=region)
        return search_branches(branches, search or "")

    def branch_detail(self, actor: UserProfile, branch_id: str) -> Dict[str, Any]:
        branch = self.require_branch(actor, branch_id)
        incidents = filter_incidents(actor, self.incidents.list_by_branch(branch_id), [branch], branch_id=branch_id)
        return {"branch": branch, "health": branch_health(incidents), "incidents": incidents}

    def dashboard(
        self,
        actor: UserProfile,
        brand: Optional[str] = None,
        region: Optional[str] = None,
        health: Optional[str] = None,
    ):
        branches = filter_branches(self.visible_branches(actor), brand=brand, region=region)
        incidents = self.incidents.list_by_branches(b.id for b in branches)
        return dashboard_summary(branches, incidents, health_filter=health)

    # ----------------------------
    # Incidents
    # ----------------------------
    def list_incidents(
        self,
        actor: UserProfile,
        filters: Optional[IncidentFilters] = None,
        branch_id: Optional[str] = None,
    ) -> List[Incident]:
        visible = self.visible_branches(actor)
        if actor.is_superadmin:
            if not branch_id or branch_id == "all":
                return []
            candidates = self.incidents.list_by_branch(branch_id)
        else:
            candidates = self.incidents.list_by_branches(b.id for b in visible)
        return filter_incidents(actor, candidates, visible, filters=filters, branch_id=branch_id)

    def get_incident(self, actor: UserProfile, incident_id: str) -> Incident:
        incident = self.incidents.get_by_id(incident_id)
        self.require_branch(actor, incident.branch_id)
        return incident

    def report(
        self,
        actor: UserProfile,
        branch_id: str,
        fields: Dict[str, Any],
        evidence: EvidenceBundle,
    ) -> Incident:
        """Persist a reviewed report: AI suggestions or manual entry, edited by the user."""
        self.require_branch(actor, branch_id)

        priority = normalize_priority(fields.get("priority"))
        if priority is None:
            raise ValidationError(f"Unknown priority {fields.get('priority')!r}; expected Low, Medium or High.")

        classification = ClassificationResult(
            title=str(fields.get("title") or ""),
            category=str(fields.get("category") or ""),
            priority=priority,
            priority_reasoning=str(fields.get("priority_reasoning") or ""),
            status=initial_status(fields.get("status")),
            description=str(fields.get("description") or ""),
        )
        incident = self.assembler.assemble(branch_id, classification, evidence)
        return self.incidents.create(incident)

    def change_status(self, actor: UserProfile, incident_id: str, status: Any) -> Incident:
        self.get_incident(actor, incident_id)
        return self.lifecycle.transition(incident_id, status)

    # ----------------------------
    # AI assistance
    # ----------------------------
    def manual_suggestion(self, evidence: EvidenceBundle) -> Dict[str, Any]:
        return {
            "title": "",
            "category": None,
            "priority": None,
            "priority_reasoning": "",
            "status": IncidentStatus.OPEN.value,
            "description": evidence.text_description or evidence.audio_transcript or "",
        }

    def analyze(self, evidence: EvidenceBundle) -> Dict[str, Any]:
        """
        Classify evidence against the current settings.

        Classifier failures do not block reporting: the caller gets the error plus
        empty suggestions to fill in by hand.
        """
        settings = self.settings_store.load()
        try:
            result = self._classifier_factory().classify(evidence, settings)
        except (ClassificationError, RemoteServiceError) as e:
            logger.warning(f"Analysis failed, falling back to manual entry: {e.message}")
            return {"ok": False, "error": e.message, "suggestion": self.manual_suggestion(evidence)}

        data = result.model_dump(mode="json", exclude={"usage"})
        return {
            "ok": True,
            "suggestion": data,
            "usage": result.usage.model_dump() if result.usage else None,
            "cost": usage_cost(result.usage),
        }

    def transcribe(self, audio_ref: str) -> Dict[str, Any]:
        t = self._transcriber_factory().transcribe(audio_ref)
        return {
            "ok": True,
            "text": t.text,
            "usage": t.usage.model_dump() if t.usage else None,
            "cost": usage_cost(t.usage),
        }


def build_service(seed: bool = True) -> IncidentService:
    """Service backed by the data dir, or fully in memory when BRANCHWATCH_STORE=memory."""
    backend = (os.getenv("BRANCHWATCH_STORE") or "json").strip().lower()
    if backend == "memory":
        store: MemoryStore = MemoryStore()
        media = MediaStore()
    else:
        store = JsonFileStore(app_data_dir() / "data")
        media = MediaStore(app_data_dir() / "media")
    service = IncidentService(store, get_store(), media)
    if seed:
        service.seed()
    logger.info(f"Incident service ready (store={backend})")
    return service


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------
class RegisterRequest(BaseModel):
    name: str = ""
    email: str = ""


class AssignBranchesRequest(BaseModel):
    branch_ids: List[str] = Field(default_factory=list)


class EvidenceRequest(BaseModel):
    photo_ref: Optional[str] = None
    audio_transcript: Optional[str] = None
    text_description: Optional[str] = None


class ReportRequest(EvidenceRequest):
    branch_id: str
    title: str = ""
    category: str = ""
    priority: str = ""
    priority_reasoning: str = ""
    status: Optional[str] = None
    description: str = ""


class StatusRequest(BaseModel):
    status: str


class TranscribeRequest(BaseModel):
    audio_ref: str


class MediaRequest(BaseModel):
    data_uri: str


class CategoryRequest(BaseModel):
    name: str


def _profile_dict(p: UserProfile) -> Dict[str, Any]:
    d = p.model_dump(mode="json")
    d["assigned_branches"] = sorted(p.assigned_branches)
    return d


def _incident_list(items: List[Incident]) -> List[Dict[str, Any]]:
    return [i.model_dump(mode="json") for i in items]


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------
def create_app(service: Optional[IncidentService] = None) -> FastAPI:
    app = FastAPI(title="Branchwatch")
    app.state.service = service

    def get_service(request: Request) -> IncidentService:
        if request.app.state.service is None:
            request.app.state.service = build_service()
        return request.app.state.service

    def current_identity(x_user_id: Optional[str] = Header(default=None)) -> Identity:
        user_id = (x_user_id or "").strip()
        return Identity(user_id=user_id or None, is_authenticated=bool(user_id))

    def current_user(
        identity: Identity = Depends(current_identity),
        svc: IncidentService = Depends(get_service),
    ) -> UserProfile:
        return svc.accounts.resolve_identity(identity)

    @app.exception_handler(BranchwatchError)
    async def _domain_error(request: Request, exc: BranchwatchError) -> JSONResponse:
        return JSONResponse({"ok": False, "error": exc.message}, status_code=exc.status_code)

    @app.exception_handler(SchemaError)
    async def _schema_error(request: Request, exc: SchemaError) -> JSONResponse:
        return JSONResponse({"ok": False, "error": str(exc)}, status_code=400)

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "service": "branchwatch"}

    # ----------------------------
    # Users
    # ----------------------------
    @app.post("/api/users")
    def api_register(
        payload: RegisterRequest,
        identity: Identity = Depends(current_identity),
        svc: IncidentService = Depends(get_service),
    ) -> JSONResponse:
        if not identity.is_authenticated:
            raise PermissionDenied("Sign in to continue.")
        profile = svc.accounts.register(identity.user_id, payload.name, payload.email)
        return JSONResponse({"ok": True, "user": _profile_dict(profile)}, status_code=201)

    @app.get("/api/me")
    def api_me(actor: UserProfile = Depends(current_user)) -> JSONResponse:
        return JSONResponse({"ok": True, "user": _profile_dict(actor)})

    @app.get("/api/users")
    def api_users(
        actor: UserProfile = Depends(current_user),
        svc: IncidentService = Depends(get_service),
    ) -> JSONResponse:
        users = svc.accounts.list_users(actor)
        return JSONResponse({"ok": True, "users": [_profile_dict(u) for u in users]})

    @app.put("/api/users/{user_id}/branches")
    def api_assign_branches(
        user_id: str,
        payload: AssignBranchesRequest,
        actor: UserProfile = Depends(current_user),
        svc: IncidentService = Depends(get_service),
    ) -> JSONResponse:
        profile = svc.accounts.assign_branches(actor, user_id, payload.branch_ids)
        return JSONResponse({"ok": True, "user": _profile_dict(profile)})

    # ----------------------------
    # Branches + dashboard
    # ----------------------------
    @app.get("/api/branches")
    def api_branches(
        brand: Optional[str] = None,
        region: Optional[str] = None,
        search: Optional[str] = None,
        actor: UserProfile = Depends(current_user),
        svc: IncidentService = Depends(get_service),
    ) -> JSONResponse:
        branches = svc.list_branches(actor, brand=brand, region=region, search=search)
        return JSONResponse({"ok": True, "branches": [b.model_dump(mode="json") for b in branches]})

    @app.get("/api/branches/{branch_id}")
    def api_branch(
        branch_id: str,
        actor: UserProfile = Depends(current_user),
        svc: IncidentService = Depends(get_service),
    ) -> JSONResponse:
        detail = svc.branch_detail(actor, branch_id)
        return JSONResponse({
            "ok": True,
            "branch": detail["branch"].model_dump(mode="json"),
            "health": detail["health"].value,
            "incidents": _incident_list(detail["incidents"]),
        })

    @app.get("/api/dashboard")
    def api_dashboard(
        brand: Optional[str] = None,
        region: Optional[str] = None,
        health: Optional[str] = None,
        actor: UserProfile = Depends(current_user),
        svc: IncidentService = Depends(get_service),
    ) -> JSONResponse:
        summary = svc.dashboard(actor, brand=brand, region=region, health=health)
        return JSONResponse({"ok": True, **summary.model_dump(mode="json")})

    # ----------------------------
    # Incidents
    # ----------------------------
    @app.get("/api/incidents")
    def api_incidents(
        branch_id: Optional[str] = None,
        category: Optional[str] = None,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        region: Optional[str] = None,
        brand: Optional[str] = None,
        actor: UserProfile = Depends(current_user),
        svc: IncidentService = Depends(get_service),
    ) -> JSONResponse:
        filters = IncidentFilters(category=category, status=status, priority=priority, region=region, brand=brand)
        items = svc.list_incidents(actor, filters=filters, branch_id=branch_id)
        return JSONResponse({"ok": True, "incidents": _incident_list(items)})

    @app.get("/api/incidents/{incident_id}")
    def api_incident(
        incident_id: str,
        actor: UserProfile = Depends(current_user),
        svc: IncidentService = Depends(get_service),
    ) -> JSONResponse:
        incident = svc.get_incident(actor, incident_id)
        return JSONResponse({"ok": True, "incident": incident.model_dump(mode="json")})

    @app.post("/api/incidents")
    def api_report(
        payload: ReportRequest,
        actor: UserProfile = Depends(current_user),
        svc: IncidentService = Depends(get_service),
    ) -> JSONResponse:
        evidence = normalize_evidence(
            photo_ref=payload.photo_ref,
            audio_transcript=payload.audio_transcript,
            text_description=payload.text_description or payload.description,
        )
        incident = svc.report(actor, payload.branch_id, payload.model_dump(), evidence)
        return JSONResponse({"ok": True, "incident": incident.model_dump(mode="json")}, status_code=201)

    @app.put("/api/incidents/{incident_id}/status")
    def api_incident_status(
        incident_id: str,
        payload: StatusRequest,
        actor: UserProfile = Depends(current_user),
        svc: IncidentService = Depends(get_service),
    ) -> JSONResponse:
        incident = svc.change_status(actor, incident_id, payload.status)
        return JSONResponse({"ok": True, "incident": incident.model_dump(mode="json")})

    # ----------------------------
    # AI assistance + media
    # ----------------------------
    @app.post("/api/analyze")
    async def api_analyze(
        payload: EvidenceRequest,
        actor: UserProfile = Depends(current_user),
        svc: IncidentService = Depends(get_service),
    ) -> JSONResponse:
        evidence = normalize_evidence(payload.photo_ref, payload.audio_transcript, payload.text_description)
        # model calls block; keep the event loop free for other requests
        result = await asyncio.to_thread(svc.analyze, evidence)
        return JSONResponse(result)

    @app.post("/api/transcribe")
    async def api_transcribe(
        payload: TranscribeRequest,
        actor: UserProfile = Depends(current_user),
        svc: IncidentService = Depends(get_service),
    ) -> JSONResponse:
        result = await asyncio.to_thread(svc.transcribe, payload.audio_ref)
        return JSONResponse(result)

    @app.post("/api/media")
    def api_media(
        payload: MediaRequest,
        actor: UserProfile = Depends(current_user),
        svc: IncidentService = Depends(get_service),
    ) -> JSONResponse:
        ref = svc.media.put_data_uri(payload.data_uri)
        return JSONResponse({"ok": True, "ref": ref}, status_code=201)

    # ----------------------------
    # Settings
    # ----------------------------
    @app.get("/api/settings/incidents")
    def api_incident_settings(
        actor: UserProfile = Depends(current_user),
        svc: IncidentService = Depends(get_service),
    ) -> JSONResponse:
        s = svc.settings_store.load()
        return JSONResponse({"ok": True, "settings": s.model_dump(mode="json")})

    @app.post("/api/settings/incidents/categories")
    def api_add_category(
        payload: CategoryRequest,
        actor: UserProfile = Depends(current_user),
        svc: IncidentService = Depends(get_service),
    ) -> JSONResponse:
        svc.accounts.require_superadmin(actor)
        s = svc.settings_store.add_category(payload.name)
        return JSONResponse({"ok": True, "settings": s.model_dump(mode="json")})

    @app.delete("/api/settings/incidents/categories/{name}")
    def api_remove_category(
        name: str,
        actor: UserProfile = Depends(current_user),
        svc: IncidentService = Depends(get_service),
    ) -> JSONResponse:
        svc.accounts.require_superadmin(actor)
        s = svc.settings_store.remove_category(name)
        return JSONResponse({"ok": True, "settings": s.model_dump(mode="json")})

    @app.get("/api/settings/llm")
    def api_llm_settings(actor: UserProfile = Depends(current_user)) -> JSONResponse:
        return JSONResponse({"ok": True, "settings": get_settings().to_public_dict()})

    @app.put("/api/settings/llm")
    def api_update_llm_settings(
        payload: Dict[str, Any],
        actor: UserProfile = Depends(current_user),
        svc: IncidentService = Depends(get_service),
    ) -> JSONResponse:
        svc.accounts.require_superadmin(actor)
        updated = update_settings(payload)
        return JSONResponse({"ok": True, "settings": updated.to_public_dict()})

    return app


app = create_app()
