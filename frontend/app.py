from __future__ import annotations

import html
import mimetypes
import secrets
from dataclasses import dataclass, field
from email.parser import BytesParser
from email.policy import default
from http import HTTPStatus
from http.cookies import SimpleCookie
from pathlib import Path
from typing import Any, Callable, Iterable, Optional
from urllib.parse import parse_qs, urlencode, urlparse

from backend.checklists import FleetChecklistApp
from backend.checklists.config import Settings, configure_logging
from backend.checklists.directories import AuthContext
from backend.checklists.errors import IncompleteFormError, TransportError, ValidationError
from backend.checklists.models import (
    ChecklistRecord,
    ChecklistStatus,
    ChecklistTemplate,
    Section,
    SectionKind,
    TemplateType,
    User,
    Vehicle,
)
from backend.checklists.records import RecordFilters
from backend.checklists.reports import PRIORITY_LABELS, REASON_LABELS, STATE_LABELS, STATUS_LABELS, TYPE_LABELS
from backend.checklists.session import ChecklistSession
from backend.checklists.uploads import LocalUploadService

NO_TEMPLATES_MESSAGE = "No hay plantillas asignadas"
FILTER_PARAMS = ("type", "vehicle_id", "economic_number", "start", "end", "status")
INLINE_ERROR_FIELDS = frozenset(
    {
        "vehicle_id",
        "type",
        "driver_name",
        "inspector_name",
        "reason",
        "handover_user_id",
        "results",
        "general_observations",
        "recommendations",
        "priority",
        "next_maintenance_date",
        "evidence_url",
    }
)


def parse_sections_text(text: str) -> list[dict[str, Any]]:
    """Parse the template editor's plain text outline.

    ``# Title | kind | id=key`` starts a section, every other non blank line
    is an item written as ``Name`` or ``Name | id=key``.
    """
    sections: list[dict[str, Any]] = []
    for number, raw_line in enumerate((text or "").splitlines(), start=1):
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith("#"):
            parts = [part.strip() for part in line.lstrip("#").split("|")]
            section: dict[str, Any] = {"title": parts[0], "items": []}
            for option in parts[1:]:
                if option.startswith("id="):
                    section["id"] = option[3:].strip()
                elif option:
                    if option not in {kind.value for kind in SectionKind}:
                        raise ValidationError("sections", f"Línea {number}: tipo de sección desconocido '{option}'")
                    section["kind"] = option
            sections.append(section)
            continue
        if not sections:
            raise ValidationError("sections", f"Línea {number}: el ítem '{line}' no pertenece a ninguna sección")
        parts = [part.strip() for part in line.split("|")]
        item: dict[str, str] = {"name": parts[0]}
        for option in parts[1:]:
            if option.startswith("id="):
                item["id"] = option[3:].strip()
        sections[-1]["items"].append(item)
    return sections


def format_sections_text(sections: Iterable[Section]) -> str:
    lines: list[str] = []
    for section in sections:
        header = f"# {section.title} | {section.kind.value}"
        if section.id != section.title:
            header += f" | id={section.id}"
        lines.append(header)
        for item in section.items:
            lines.append(item.name if item.id == item.name else f"{item.name} | id={item.id}")
    return "\n".join(lines)


@dataclass
class UploadedFile:
    filename: str
    content_type: str
    data: bytes


@dataclass
class Request:
    method: str
    target: str
    headers: dict[str, str]
    body: bytes = b""

    def __post_init__(self) -> None:
        parsed = urlparse(self.target)
        self.path = parsed.path or "/"
        self.query = parse_qs(parsed.query)
        self.form: dict[str, list[str]] = {}
        self.files: dict[str, list[UploadedFile]] = {}
        if self.method in {"POST", "PUT"}:
            content_type = self.headers.get("Content-Type", "")
            if "application/x-www-form-urlencoded" in content_type:
                self.form = parse_qs(self.body.decode("utf-8"), keep_blank_values=True)
            elif "multipart/form-data" in content_type:
                self._parse_multipart(content_type)
        cookie_header = self.headers.get("Cookie", "")
        cookie = SimpleCookie(cookie_header)
        self.cookies = {key: morsel.value for key, morsel in cookie.items()}

    def form_value(self, name: str, default: Optional[str] = None) -> Optional[str]:
        values = self.form.get(name)
        return values[0] if values else default

    def form_values(self, name: str) -> list[str]:
        return self.form.get(name, [])

    def query_value(self, name: str) -> Optional[str]:
        values = self.query.get(name)
        return values[0] if values else None

    def file_values(self, name: str) -> list[UploadedFile]:
        return self.files.get(name, [])

    def _parse_multipart(self, content_type: str) -> None:
        message = BytesParser(policy=default).parsebytes(
            f"Content-Type: {content_type}\r\n\r\n".encode("utf-8") + self.body
        )
        for part in message.iter_parts():
            if part.get_content_disposition() != "form-data":
                continue
            name = part.get_param("name", header="Content-Disposition")
            if not name:
                continue
            filename = part.get_param("filename", header="Content-Disposition")
            payload = part.get_payload(decode=True)
            if filename:
                upload = UploadedFile(
                    filename=filename,
                    content_type=part.get_content_type(),
                    data=payload,
                )
                self.files.setdefault(name, []).append(upload)
            else:
                charset = part.get_content_charset("utf-8") or "utf-8"
                value = payload.decode(charset)
                self.form.setdefault(name, []).append(value)

    def cookie(self, name: str) -> Optional[str]:
        return self.cookies.get(name)


@dataclass
class Response:
    status: int = HTTPStatus.OK
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: bytes | str = ""

    def set_cookie(self, name: str, value: str, *, path: str = "/", max_age: Optional[int] = None) -> None:
        cookie = SimpleCookie()
        cookie[name] = value
        cookie[name]["path"] = path
        if max_age is not None:
            cookie[name]["max-age"] = str(max_age)
        header_value = cookie.output(header="")
        self.headers.append(("Set-Cookie", header_value.strip()))

    def add_header(self, name: str, value: str) -> None:
        self.headers.append((name, value))


class FleetChecklistWebApp:
    def __init__(self, database_path: Path, upload_dir: Optional[Path] = None) -> None:
        self.upload_dir = Path(upload_dir) if upload_dir else Path(database_path).parent / "uploads"
        self.uploads = LocalUploadService(self.upload_dir)
        self.service = FleetChecklistApp.create(database_path, uploads=self.uploads)
        self.service.seed_defaults()
        self.sessions: dict[str, int] = {}
        self.checklist_sessions: dict[str, ChecklistSession] = {}
        self.flash_messages: dict[str, list[tuple[str, str]]] = {}

    # Public API -----------------------------------------------------------------
    def wsgi_app(self, environ: dict[str, Any], start_response: Callable) -> Iterable[bytes]:
        method = environ["REQUEST_METHOD"]
        target = environ.get("RAW_URI") or environ.get("PATH_INFO", "/")
        if environ.get("QUERY_STRING") and "?" not in target:
            target = f"{target}?{environ['QUERY_STRING']}"
        length = int(environ.get("CONTENT_LENGTH") or 0)
        body = environ["wsgi.input"].read(length) if length else b""
        headers = {key: value for key, value in environ.items() if key.startswith("HTTP_")}
        if "CONTENT_TYPE" in environ:
            headers["Content-Type"] = environ["CONTENT_TYPE"]
        if "HTTP_COOKIE" in environ:
            headers["Cookie"] = environ["HTTP_COOKIE"]
        request = Request(method=method, target=target, headers=headers, body=body)
        response = self.handle(request)
        start_response(f"{response.status.value} {response.status.phrase}", response.headers)
        body = response.body if isinstance(response.body, bytes) else response.body.encode("utf-8")
        return [body]

    def handle(self, request: Request) -> Response:
        if request.method == "GET" and request.path.startswith("/uploads/"):
            filename = request.path.split("/", 2)[-1]
            return self._serve_upload(filename)

        route = self._match_route(request)
        if not route:
            return self._not_found()
        handler, params = route
        response = handler(request, **params)
        if not any(name.lower() == "content-type" for name, _ in response.headers):
            response.add_header("Content-Type", "text/html; charset=utf-8")
        if not (300 <= response.status.value < 400) and isinstance(response.body, str):
            messages = self._consume_messages(request)
            if messages:
                response.body = response.body.replace("<!--FLASH-->", self._render_messages(messages))
            else:
                response.body = response.body.replace("<!--FLASH-->", "")
        return response

    def run(self, host: str = "127.0.0.1", port: int = 8000) -> None:
        from wsgiref.simple_server import make_server

        with make_server(host, port, self.wsgi_app) as httpd:
            print(f"Serving on http://{host}:{port}")
            httpd.serve_forever()

    # Routing --------------------------------------------------------------------
    def _match_route(self, request: Request) -> Optional[tuple[Callable, dict[str, Any]]]:
        simple_routes: dict[tuple[str, str], Callable[[Request], Response]] = {
            ("GET", "/"): self._home,
            ("GET", "/login"): self._login_get,
            ("POST", "/login"): self._login_post,
            ("GET", "/logout"): self._logout,
            ("GET", "/checklists"): self._checklist_list,
            ("GET", "/checklists/export"): self._checklist_export,
            ("GET", "/checklists/new"): self._checklist_new_get,
            ("POST", "/checklists/new"): self._checklist_new_post,
            ("GET", "/checklists/close"): self._checklist_close,
            ("GET", "/templates"): self._template_list,
            ("GET", "/templates/new"): self._template_new,
            ("POST", "/templates/new"): self._template_new,
        }
        handler = simple_routes.get((request.method, request.path))
        if handler:
            return handler, {}

        parts = request.path.strip("/").split("/")
        if parts[0] == "checklists" and len(parts) in {2, 3}:
            checklist_id = parts[1]
            if len(parts) == 2 and request.method == "GET":
                return self._checklist_detail, {"checklist_id": checklist_id}
            action = parts[2] if len(parts) == 3 else ""
            if action == "print" and request.method == "GET":
                return self._checklist_print, {"checklist_id": checklist_id}
            if action == "edit":
                return self._checklist_edit, {"checklist_id": checklist_id}
            if action == "delete" and request.method == "POST":
                return self._checklist_delete, {"checklist_id": checklist_id}
        if parts[0] == "templates" and len(parts) == 3:
            template_id, action = parts[1], parts[2]
            if action == "edit":
                return self._template_edit, {"template_id": template_id}
            if action == "clone" and request.method == "POST":
                return self._template_clone, {"template_id": template_id}
            if action == "toggle":
                return self._template_toggle, {"template_id": template_id}
            if action == "delete" and request.method == "POST":
                return self._template_delete, {"template_id": template_id}
        return None

    # Session helpers ------------------------------------------------------------
    def _current_user(self, request: Request) -> Optional[User]:
        token = request.cookie("session_id")
        if not token:
            return None
        user_id = self.sessions.get(token)
        if not user_id:
            return None
        return self.service.database.get_user(user_id)

    def _auth(self, user: User) -> AuthContext:
        return AuthContext(current_user=user)

    def _checklist_session(self, request: Request) -> ChecklistSession:
        token = request.cookie("session_id") or "__anon__"
        return self.checklist_sessions.setdefault(token, ChecklistSession())

    def _set_session(self, response: Response, user: User) -> str:
        token = secrets.token_urlsafe(24)
        self.sessions[token] = user.id
        response.set_cookie("session_id", token, path="/")
        return token

    def _clear_session(self, request: Request, response: Response) -> None:
        token = request.cookie("session_id")
        if token:
            self.sessions.pop(token, None)
            self.checklist_sessions.pop(token, None)
            response.set_cookie("session_id", "", path="/", max_age=0)

    def _flash(self, request: Request, category: str, message: str, *, token: Optional[str] = None) -> None:
        key = token or request.cookie("session_id") or "__anon__"
        self.flash_messages.setdefault(key, []).append((category, message))

    def _consume_messages(self, request: Request) -> list[tuple[str, str]]:
        key = request.cookie("session_id") or "__anon__"
        return self.flash_messages.pop(key, [])

    # Route handlers -------------------------------------------------------------
    def _home(self, request: Request) -> Response:
        if not self._current_user(request):
            return self._redirect("/login")
        return self._redirect("/checklists")

    def _login_get(self, request: Request) -> Response:
        return self._page("Iniciar sesión", None, self._render_login())

    def _login_post(self, request: Request) -> Response:
        email = (request.form_value("email") or "").strip()
        user = self.service.find_user_by_email(email)
        if user is None:
            self._flash(request, "error", "No encontramos una cuenta con ese correo.")
            return self._page("Iniciar sesión", None, self._render_login())
        response = self._redirect("/checklists")
        session_token = self._set_session(response, user)
        self._flash(request, "success", f"Bienvenido, {user.full_name}.", token=session_token)
        return response

    def _logout(self, request: Request) -> Response:
        response = self._redirect("/login")
        self._clear_session(request, response)
        self._flash(request, "info", "Sesión cerrada.", token="__anon__")
        return response

    def _checklist_list(self, request: Request) -> Response:
        user = self._current_user(request)
        if not user:
            return self._redirect("/login")
        params = {name: request.query_value(name) for name in FILTER_PARAMS}
        try:
            filters = RecordFilters.from_query(params)
        except ValidationError as exc:
            self._flash(request, "error", exc.message)
            filters = RecordFilters()
        records = self.service.list_checklists(self._auth(user), filters)
        content = self._render_filters(params) + self._render_checklist_table(user, records, params)
        return self._page("Checklists", user, content)

    def _checklist_export(self, request: Request) -> Response:
        user = self._current_user(request)
        if not user:
            return self._redirect("/login")
        params = {name: request.query_value(name) for name in FILTER_PARAMS}
        try:
            filters = RecordFilters.from_query(params)
        except ValidationError as exc:
            self._flash(request, "error", exc.message)
            return self._redirect("/checklists")
        filename, data = self.service.export_checklists(self._auth(user), filters)
        return Response(
            headers=[
                ("Content-Type", "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"),
                ("Content-Disposition", f'attachment; filename="{filename}"'),
            ],
            body=data,
        )

    def _checklist_new_get(self, request: Request) -> Response:
        user = self._current_user(request)
        if not user:
            return self._redirect("/login")
        session = self._checklist_session(request)
        vehicle_param = request.query_value("vehicle_id")
        try:
            vehicle_id = int(vehicle_param) if vehicle_param else None
        except ValueError:
            vehicle_id = None
        self.service.start_checklist(session, self._auth(user), vehicle_id=vehicle_id)
        return self._page("Nuevo checklist", user, self._render_checklist_form(user, session, "/checklists/new"))

    def _checklist_new_post(self, request: Request) -> Response:
        user = self._current_user(request)
        if not user:
            return self._redirect("/login")
        session = self._checklist_session(request)
        if not session.is_open or not session.is_new:
            self.service.start_checklist(session, self._auth(user))
        return self._handle_checklist_post(request, user, session, "/checklists/new")

    def _checklist_edit(self, request: Request, *, checklist_id: str) -> Response:
        user = self._current_user(request)
        if not user:
            return self._redirect("/login")
        action_url = f"/checklists/{checklist_id}/edit"
        session = self._checklist_session(request)
        try:
            record_id = int(checklist_id)
            if request.method == "GET" or session.record_id != record_id:
                self.service.start_edit(session, self._auth(user), record_id)
        except (ValueError, LookupError):
            return self._not_found()
        except PermissionError as exc:
            self._flash(request, "error", str(exc))
            return self._redirect(f"/checklists/{checklist_id}")
        if request.method == "GET":
            return self._page("Editar checklist", user, self._render_checklist_form(user, session, action_url))
        return self._handle_checklist_post(request, user, session, action_url)

    def _handle_checklist_post(self, request: Request, user: User, session: ChecklistSession, action_url: str) -> Response:
        title = "Nuevo checklist" if session.is_new else "Editar checklist"
        try:
            self._apply_checklist_form(request, session)
        except ValidationError as exc:
            return self._checklist_form_error(request, user, session, action_url, exc)

        if request.form_value("action") == "vehicle":
            vehicle_param = request.form_value("vehicle_id") or ""
            try:
                self.service.select_vehicle(session, self._auth(user), int(vehicle_param) if vehicle_param else None)
            except (ValueError, LookupError):
                errors = {"vehicle_id": "Selecciona un vehículo válido."}
                return self._page(title, user, self._render_checklist_form(user, session, action_url, errors))
            return self._page(title, user, self._render_checklist_form(user, session, action_url))

        evidence = [upload for upload in request.file_values("evidence") if upload.data]
        try:
            if evidence:
                self.service.upload_evidence(session, evidence[0].filename, evidence[0].data)
            record = self.service.submit(session, self._auth(user))
        except IncompleteFormError as exc:
            for reason in exc.reasons:
                self._flash(request, "blocking", reason)
            return self._page(title, user, self._render_checklist_form(user, session, action_url))
        except TransportError as exc:
            errors = {"evidence_url": str(exc)}
            return self._page(title, user, self._render_checklist_form(user, session, action_url, errors))
        except ValidationError as exc:
            return self._checklist_form_error(request, user, session, action_url, exc)
        except (ValueError, PermissionError) as exc:
            self._flash(request, "error", str(exc))
            return self._page(title, user, self._render_checklist_form(user, session, action_url))
        self._flash(request, "success", f"Checklist {record.folio} guardado.")
        return self._redirect(f"/checklists/{record.id}")

    def _checklist_form_error(
        self, request: Request, user: User, session: ChecklistSession, action_url: str, exc: ValidationError
    ) -> Response:
        title = "Nuevo checklist" if session.is_new else "Editar checklist"
        if exc.field in INLINE_ERROR_FIELDS:
            errors = {exc.field: exc.message}
        else:
            self._flash(request, "error", exc.message)
            errors = {}
        return self._page(title, user, self._render_checklist_form(user, session, action_url, errors))

    def _apply_checklist_form(self, request: Request, session: ChecklistSession) -> None:
        index = 0
        for section_view in session.form():
            for item in section_view.items:
                state_key = f"state-{index}"
                obs_key = f"obs-{index}"
                if state_key in request.form:
                    session.set_state(section_view.section_id, item.item_id, request.form_value(state_key))
                if obs_key in request.form:
                    session.set_obs(section_view.section_id, item.item_id, request.form_value(obs_key))
                index += 1
        header: dict[str, Any] = {}
        for name in (
            "type",
            "driver_name",
            "inspector_name",
            "reason",
            "priority",
            "general_observations",
            "recommendations",
            "next_maintenance_date",
            "handover_user_id",
        ):
            if name in request.form:
                header[name] = request.form_value(name)
        session.update_header(**header)

    def _checklist_close(self, request: Request) -> Response:
        self._checklist_session(request).close()
        return self._redirect("/checklists")

    def _checklist_detail(self, request: Request, *, checklist_id: str) -> Response:
        user = self._current_user(request)
        if not user:
            return self._redirect("/login")
        try:
            record = self.service.get_checklist(self._auth(user), int(checklist_id))
        except (ValueError, LookupError, PermissionError):
            return self._not_found()
        vehicle = self.service.vehicles.get(record.vehicle_id)
        content = self._render_checklist_detail(user, record, vehicle)
        return self._page(f"Checklist {record.folio}", user, content)

    def _checklist_print(self, request: Request, *, checklist_id: str) -> Response:
        user = self._current_user(request)
        if not user:
            return self._redirect("/login")
        try:
            document = self.service.printable_checklist(self._auth(user), int(checklist_id))
        except (ValueError, LookupError, PermissionError):
            return self._not_found()
        return Response(headers=[("Content-Type", "text/html; charset=utf-8")], body=document)

    def _checklist_delete(self, request: Request, *, checklist_id: str) -> Response:
        user = self._current_user(request)
        if not user:
            return self._redirect("/login")
        try:
            self.service.delete_checklist(self._auth(user), int(checklist_id))
        except (ValueError, LookupError):
            return self._not_found()
        except PermissionError as exc:
            self._flash(request, "error", str(exc))
            return self._redirect(f"/checklists/{checklist_id}")
        self._flash(request, "success", "Checklist eliminado.")
        return self._redirect("/checklists")

    def _template_list(self, request: Request) -> Response:
        user = self._current_user(request)
        if not user:
            return self._redirect("/login")
        if not user.is_admin:
            return self._not_found()
        templates = self.service.list_templates(self._auth(user))
        return self._page("Plantillas", user, self._render_template_table(templates))

    def _template_new(self, request: Request) -> Response:
        user = self._current_user(request)
        if not user:
            return self._redirect("/login")
        if not user.is_admin:
            return self._not_found()
        values = self._template_form_values(request)
        if request.method == "POST":
            try:
                template = self.service.create_template(
                    self._auth(user),
                    name=values["name"],
                    description=values["description"],
                    template_type=values["type"],
                    sections=parse_sections_text(values["sections"]),
                    role_ids=values["role_ids"],
                    active=values["active"],
                )
            except ValueError as exc:
                self._flash(request, "error", str(exc))
            else:
                self._flash(request, "success", f"Plantilla {template.name} creada.")
                return self._redirect("/templates")
        return self._page("Nueva plantilla", user, self._render_template_form(values, "/templates/new"))

    def _template_edit(self, request: Request, *, template_id: str) -> Response:
        user = self._current_user(request)
        if not user:
            return self._redirect("/login")
        if not user.is_admin:
            return self._not_found()
        try:
            template = self.service.get_template(int(template_id))
        except (ValueError, LookupError):
            return self._not_found()
        action_url = f"/templates/{template.id}/edit"
        if request.method == "GET":
            values = {
                "name": template.name,
                "description": template.description or "",
                "type": template.type.value,
                "sections": format_sections_text(template.sections),
                "role_ids": list(template.role_ids),
                "active": template.active,
            }
            return self._page("Editar plantilla", user, self._render_template_form(values, action_url))
        values = self._template_form_values(request)
        try:
            self.service.update_template(
                self._auth(user),
                template.id,
                {
                    "name": values["name"],
                    "description": values["description"],
                    "type": values["type"],
                    "sections": parse_sections_text(values["sections"]),
                    "role_ids": values["role_ids"],
                    "active": values["active"],
                },
            )
        except ValueError as exc:
            self._flash(request, "error", str(exc))
            return self._page("Editar plantilla", user, self._render_template_form(values, action_url))
        self._flash(request, "success", "Plantilla actualizada.")
        return self._redirect("/templates")

    def _template_clone(self, request: Request, *, template_id: str) -> Response:
        user = self._current_user(request)
        if not user:
            return self._redirect("/login")
        try:
            copy = self.service.clone_template(self._auth(user), int(template_id), active=False)
        except (ValueError, LookupError, PermissionError):
            return self._not_found()
        self._flash(request, "success", f"Se creó {copy.name} (inactiva).")
        return self._redirect(f"/templates/{copy.id}/edit")

    def _template_toggle(self, request: Request, *, template_id: str) -> Response:
        user = self._current_user(request)
        if not user:
            return self._redirect("/login")
        if not user.is_admin:
            return self._not_found()
        try:
            template = self.service.get_template(int(template_id))
        except (ValueError, LookupError):
            return self._not_found()
        if request.method == "GET":
            return self._page("Confirmar", user, self._render_toggle_confirm(template))
        active = request.form_value("active") == "1"
        self.service.toggle_template(self._auth(user), template.id, active)
        self._flash(request, "success", f"Plantilla {'activada' if active else 'desactivada'}.")
        return self._redirect("/templates")

    def _template_delete(self, request: Request, *, template_id: str) -> Response:
        user = self._current_user(request)
        if not user:
            return self._redirect("/login")
        try:
            self.service.delete_template(self._auth(user), int(template_id))
        except (ValueError, LookupError, PermissionError):
            return self._not_found()
        self._flash(request, "success", "Plantilla eliminada.")
        return self._redirect("/templates")

    def _template_form_values(self, request: Request) -> dict[str, Any]:
        return {
            "name": (request.form_value("name") or "").strip(),
            "description": (request.form_value("description") or "").strip(),
            "type": request.form_value("type") or TemplateType.EXPRESS.value,
            "sections": request.form_value("sections") or "",
            "role_ids": [int(value) for value in request.form_values("role_ids") if value.isdigit()],
            "active": request.method == "GET" or request.form_value("active") == "1",
        }

    # Utility responses ----------------------------------------------------------
    def _page(self, title: str, user: Optional[User], content: str) -> Response:
        nav = self._nav_links(user)
        body = f"""
        <!doctype html>
        <html lang=\"es\">
          <head>
            <meta charset=\"utf-8\" />
            <meta name=\"viewport\" content=\"width=device-width, initial-scale=1\" />
            <title>{html.escape(title)} - Checklists de flota</title>
          </head>
          <body>
            <header class=\"top-bar\">
              <div class=\"brand\">Checklists de flota</div>
              <nav class=\"nav-links\">{nav}</nav>
            </header>
            <main class=\"content\">
              <!--FLASH-->
              {content}
            </main>
          </body>
        </html>
        """
        return Response(body=body)

    def _redirect(self, location: str) -> Response:
        response = Response(status=HTTPStatus.SEE_OTHER)
        response.add_header("Location", location)
        response.body = f"<html><body>Redirecting to <a href=\"{html.escape(location)}\">{html.escape(location)}</a></body></html>"
        return response

    def _not_found(self) -> Response:
        body = "<html><body><h1>404 Not Found</h1></body></html>"
        return Response(status=HTTPStatus.NOT_FOUND, headers=[("Content-Type", "text/html; charset=utf-8")], body=body)

    def _serve_upload(self, filename: str) -> Response:
        path = self.uploads.resolve(filename)
        if not path.exists() or not path.is_file():
            return self._not_found()
        content_type, _ = mimetypes.guess_type(str(path))
        content_type = content_type or "application/octet-stream"
        return Response(headers=[("Content-Type", content_type)], body=path.read_bytes())

    # Rendering helpers ----------------------------------------------------------
    def _nav_links(self, user: Optional[User]) -> str:
        links: list[str] = []
        if user:
            links.append('<a href="/checklists">Checklists</a>')
            links.append('<a href="/checklists/new">Nuevo checklist</a>')
            if user.is_admin:
                links.append('<a href="/templates">Plantillas</a>')
            links.append('<a href="/logout">Salir</a>')
        else:
            links.append('<a href="/login">Iniciar sesión</a>')
        return "".join(links)

    def _render_messages(self, messages: Iterable[tuple[str, str]]) -> str:
        items = []
        for category, message in messages:
            dismiss = (
                '<button type="button" class="dismiss" onclick="this.parentElement.remove()">&times;</button>'
                if category == "error"
                else ""
            )
            items.append(f'<li class="flash {html.escape(category)}">{html.escape(message)}{dismiss}</li>')
        if not items:
            return ""
        return '<ul class="flash-messages">' + "".join(items) + "</ul>"

    def _render_login(self) -> str:
        return """
        <section class=\"card narrow\">
          <h1>Iniciar sesión</h1>
          <form method=\"post\" class=\"form\">
            <label for=\"email\">Correo</label>
            <input type=\"email\" id=\"email\" name=\"email\" required autofocus />
            <button type=\"submit\">Entrar</button>
          </form>
        </section>
        """

    def _render_filters(self, params: dict[str, Optional[str]]) -> str:
        def value(name: str) -> str:
            return html.escape(params.get(name) or "")

        type_options = ['<option value="all">Todos</option>']
        for template_type in TemplateType:
            selected = " selected" if params.get("type") == template_type.value else ""
            type_options.append(
                f'<option value="{template_type.value}"{selected}>{TYPE_LABELS[template_type.value]}</option>'
            )
        status_options = ['<option value="all">Todos</option>']
        for status in ChecklistStatus:
            selected = " selected" if params.get("status") == status.value else ""
            status_options.append(f'<option value="{status.value}"{selected}>{STATUS_LABELS[status]}</option>')
        return f"""
        <section class=\"card\">
          <form method=\"get\" action=\"/checklists\" class=\"filters\">
            <label>Tipo <select name=\"type\">{''.join(type_options)}</select></label>
            <label>Estado <select name=\"status\">{''.join(status_options)}</select></label>
            <label>Número económico <input type=\"text\" name=\"economic_number\" value=\"{value('economic_number')}\" /></label>
            <label>Desde <input type=\"date\" name=\"start\" value=\"{value('start')}\" /></label>
            <label>Hasta <input type=\"date\" name=\"end\" value=\"{value('end')}\" /></label>
            <button type=\"submit\">Filtrar</button>
          </form>
        </section>
        """

    def _render_checklist_table(self, user: User, records: list[ChecklistRecord], params: dict[str, Optional[str]]) -> str:
        query = urlencode({key: value for key, value in params.items() if value})
        export_link = f'<a class="button" href="/checklists/export{"?" + query if query else ""}">Exportar Excel</a>'
        if not records:
            return f"<section class=\"card\"><h2>Checklists</h2><p class=\"muted\">No hay checklists registrados.</p>{export_link}</section>"
        vehicles = {vehicle.id: vehicle for vehicle in self.service.list_vehicles()}
        rows = []
        for record in records:
            vehicle = vehicles.get(record.vehicle_id)
            rows.append(
                """
                <tr>
                  <td>{folio}</td>
                  <td>{inspected}</td>
                  <td class=\"muted\">{type}</td>
                  <td>{vehicle}</td>
                  <td>{driver}</td>
                  <td>{inspector}</td>
                  <td><span class=\"badge badge-{status_class}\">{status}</span></td>
                  <td><a href=\"/checklists/{id}\">Ver</a></td>
                </tr>
                """.format(
                    id=record.id,
                    folio=html.escape(record.folio),
                    inspected=record.inspected_at.strftime("%Y-%m-%d %H:%M"),
                    type=html.escape(TYPE_LABELS[record.type.value]),
                    vehicle=html.escape(vehicle.label if vehicle else f"Vehículo {record.vehicle_id}"),
                    driver=html.escape(record.driver_name),
                    inspector=html.escape(record.inspector_name),
                    status_class=record.status.value,
                    status=html.escape(STATUS_LABELS[record.status]),
                )
            )
        return f"""
        <section class=\"card\">
          <h2>Checklists</h2>
          {export_link}
          <table class=\"checklist-table\">
            <thead><tr><th>Folio</th><th>Fecha</th><th>Tipo</th><th>Vehículo</th><th>Conductor</th><th>Inspector</th><th>Estado</th><th></th></tr></thead>
            <tbody>{''.join(rows)}</tbody>
          </table>
        </section>
        """

    def _render_checklist_form(
        self, user: User, session: ChecklistSession, action_url: str, errors: Optional[dict[str, str]] = None
    ) -> str:
        header = session.header
        errors = errors or {}

        def error(name: str) -> str:
            message = errors.get(name)
            return f'<span class="field-error">{html.escape(message)}</span>' if message else ""

        def text(name: str) -> str:
            value = header.get(name)
            return html.escape("" if value is None else str(getattr(value, "value", value)))

        def options(labels: dict[str, str], current: Any, *, blank: bool = False) -> str:
            current_value = getattr(current, "value", current) or ""
            fragments = ['<option value="">—</option>'] if blank else []
            for value, label in labels.items():
                selected = " selected" if value == current_value else ""
                fragments.append(f'<option value="{value}"{selected}>{html.escape(label)}</option>')
            return "".join(fragments)

        vehicle_options = ['<option value="">Selecciona un vehículo</option>']
        for vehicle in self.service.list_vehicles():
            selected = " selected" if vehicle.id == session.vehicle_id else ""
            vehicle_options.append(f'<option value="{vehicle.id}"{selected}>{html.escape(vehicle.label)}</option>')
        type_labels = {
            template_type.value: TYPE_LABELS[template_type.value]
            for template_type in TemplateType
            if user.is_admin or template_type is TemplateType.EXPRESS
        }
        user_options = ['<option value="">—</option>']
        for other in self.service.list_users():
            selected = " selected" if str(other.id) == str(header.get("handover_user_id") or "") else ""
            user_options.append(f'<option value="{other.id}"{selected}>{html.escape(other.full_name)}</option>')

        if session.templates:
            sections_html = self._render_form_sections(session)
        else:
            role = html.escape(session.effective_role or "sin rol")
            sections_html = (
                f'<div class="empty-state"><h3>{NO_TEMPLATES_MESSAGE}</h3>'
                f'<p class="muted">No hay plantillas activas para el rol {role}.</p></div>'
            )

        status = session.completion()
        progress = f"{status.marked} de {status.total} ítems marcados"
        evidence = (
            f'<p>Evidencia actual: <a href="{html.escape(session.evidence_url)}">{html.escape(session.evidence_url)}</a></p>'
            if session.evidence_url
            else '<p class="muted">Aún no se adjunta evidencia.</p>'
        )
        return f"""
        <section class=\"card\">
          <h1>{'Nuevo checklist' if session.is_new else 'Editar checklist'}</h1>
          <form method=\"post\" action=\"{html.escape(action_url)}\" enctype=\"multipart/form-data\" class=\"form\">
            <div class=\"form-row\">
              <label>Vehículo <select name=\"vehicle_id\">{''.join(vehicle_options)}</select>{error('vehicle_id')}</label>
              <button type=\"submit\" name=\"action\" value=\"vehicle\">Cargar plantillas</button>
            </div>
            <label>Tipo <select name=\"type\">{options(type_labels, header.get('type'))}</select>{error('type')}</label>
            <label>Conductor <input type=\"text\" name=\"driver_name\" value=\"{text('driver_name')}\" />{error('driver_name')}</label>
            <label>Inspector <input type=\"text\" name=\"inspector_name\" value=\"{text('inspector_name')}\" />{error('inspector_name')}</label>
            <label>Motivo <select name=\"reason\">{options(REASON_LABELS, header.get('reason'))}</select>{error('reason')}</label>
            <label>Entrega a <select name=\"handover_user_id\">{''.join(user_options)}</select>{error('handover_user_id')}</label>
            <p class=\"muted\">{progress}</p>
            {error('results')}
            {sections_html}
            <label>Observaciones generales <textarea name=\"general_observations\">{text('general_observations')}</textarea>{error('general_observations')}</label>
            <label>Recomendaciones <textarea name=\"recommendations\">{text('recommendations')}</textarea>{error('recommendations')}</label>
            <label>Prioridad <select name=\"priority\">{options(PRIORITY_LABELS, header.get('priority'), blank=True)}</select>{error('priority')}</label>
            <label>Próximo mantenimiento <input type=\"date\" name=\"next_maintenance_date\" value=\"{text('next_maintenance_date')}\" />{error('next_maintenance_date')}</label>
            {evidence}
            <label>Evidencia <input type=\"file\" name=\"evidence\" accept=\"image/*,application/pdf\" />{error('evidence_url')}</label>
            <button type=\"submit\" name=\"action\" value=\"submit\">Guardar checklist</button>
            <a href=\"/checklists/close\">Cancelar</a>
          </form>
        </section>
        """

    def _render_form_sections(self, session: ChecklistSession) -> str:
        fragments: list[str] = []
        index = 0
        for section_view in session.form():
            rows: list[str] = []
            for item in section_view.items:
                choices = []
                for state in section_view.allowed_states:
                    checked = " checked" if item.state == state else ""
                    choices.append(
                        f'<label class="radio-option"><input type="radio" name="state-{index}" value="{state}"{checked} />'
                        f"<span>{html.escape(STATE_LABELS[state])}</span></label>"
                    )
                unset = "" if item.state else " checked"
                choices.append(
                    f'<label class="radio-option clear"><input type="radio" name="state-{index}" value=""{unset} />'
                    "<span>—</span></label>"
                )
                rows.append(
                    f"""
                    <tr>
                      <td>{html.escape(item.name)}</td>
                      <td class=\"radio-group\">{''.join(choices)}</td>
                      <td><input type=\"text\" name=\"obs-{index}\" value=\"{html.escape(item.obs)}\" /></td>
                    </tr>
                    """
                )
                index += 1
            fragments.append(
                f"""
                <fieldset class=\"checklist-section\">
                  <legend>{html.escape(section_view.title)}</legend>
                  <table><thead><tr><th>Actividad</th><th>Estado</th><th>Observaciones</th></tr></thead>
                  <tbody>{''.join(rows)}</tbody></table>
                </fieldset>
                """
            )
        return "".join(fragments)

    def _render_checklist_detail(self, user: User, record: ChecklistRecord, vehicle: Optional[Vehicle]) -> str:
        view = self.service.checklist_detail(self._auth(user), record.id)
        sections = []
        for section in view.sections:
            rows = "".join(
                f"<tr><td>{html.escape(row.item)}</td><td>{html.escape(row.state_label)}</td><td>{html.escape(row.obs)}</td></tr>"
                for row in section.rows
            )
            sections.append(
                f"<h3>{html.escape(section.title)}</h3>"
                f"<table><thead><tr><th>Actividad</th><th>Estado</th><th>Observaciones</th></tr></thead><tbody>{rows}</tbody></table>"
            )
        actions = [f'<a href="/checklists/{record.id}/print">Imprimir</a>']
        if self.service.can_edit(user, record):
            actions.append(f'<a href="/checklists/{record.id}/edit">Editar</a>')
            actions.append(
                f'<form method="post" action="/checklists/{record.id}/delete" class="inline">'
                '<button type="submit" class="danger">Eliminar</button></form>'
            )
        evidence = (
            f'<p><a href="{html.escape(view.evidence_url)}">Ver evidencia</a></p>' if view.evidence_url else ""
        )
        return f"""
        <section class=\"card\">
          <h1>Checklist {html.escape(view.folio)}</h1>
          <p>{html.escape(vehicle.label if vehicle else f'Vehículo {record.vehicle_id}')} · {html.escape(view.type_label)} · {html.escape(view.inspected_at)}</p>
          <ul class=\"meta\">
            <li><strong>Conductor:</strong> {html.escape(view.driver_name)}</li>
            <li><strong>Inspector:</strong> {html.escape(view.inspector_name)}</li>
            <li><strong>Motivo:</strong> {html.escape(view.reason_label)}</li>
            <li><strong>Estado:</strong> {html.escape(view.status_label)}</li>
            <li><strong>Prioridad:</strong> {html.escape(view.priority_label)}</li>
            <li><strong>Próximo mantenimiento:</strong> {html.escape(view.next_maintenance)}</li>
          </ul>
          {''.join(sections) or '<p class="muted">Sin respuestas registradas.</p>'}
          <p><strong>Observaciones generales:</strong> {html.escape(view.general_observations or '—')}</p>
          <p><strong>Recomendaciones:</strong> {html.escape(view.recommendations or '—')}</p>
          {evidence}
          <div class=\"actions\">{''.join(actions)}</div>
        </section>
        """

    def _render_template_table(self, templates: list[ChecklistTemplate]) -> str:
        new_link = '<a class="button" href="/templates/new">Nueva plantilla</a>'
        if not templates:
            return f"<section class=\"card\"><h2>Plantillas</h2><p class=\"muted\">No hay plantillas.</p>{new_link}</section>"
        roles = {role.id: role.name for role in self.service.list_roles()}
        rows = []
        for template in templates:
            role_names = ", ".join(roles.get(role_id, str(role_id)) for role_id in template.role_ids) or "—"
            rows.append(
                f"""
                <tr>
                  <td>{html.escape(template.name)}</td>
                  <td class=\"muted\">{html.escape(TYPE_LABELS[template.type.value])}</td>
                  <td>{html.escape(role_names)}</td>
                  <td>{len(template.sections)}</td>
                  <td>{'Activa' if template.active else 'Inactiva'}</td>
                  <td>
                    <a href=\"/templates/{template.id}/edit\">Editar</a>
                    <form method=\"post\" action=\"/templates/{template.id}/clone\" class=\"inline\"><button type=\"submit\">Clonar</button></form>
                    <a href=\"/templates/{template.id}/toggle\">{'Desactivar' if template.active else 'Activar'}</a>
                  </td>
                </tr>
                """
            )
        return f"""
        <section class=\"card\">
          <h2>Plantillas</h2>
          {new_link}
          <table class=\"template-table\">
            <thead><tr><th>Nombre</th><th>Tipo</th><th>Roles</th><th>Secciones</th><th>Estado</th><th></th></tr></thead>
            <tbody>{''.join(rows)}</tbody>
          </table>
        </section>
        """

    def _render_template_form(self, values: dict[str, Any], action_url: str) -> str:
        type_options = "".join(
            f'<option value="{template_type.value}"{" selected" if values["type"] == template_type.value else ""}>'
            f"{TYPE_LABELS[template_type.value]}</option>"
            for template_type in TemplateType
        )
        role_boxes = "".join(
            f'<label class="checkbox"><input type="checkbox" name="role_ids" value="{role.id}"'
            f'{" checked" if role.id in values["role_ids"] else ""} /> {html.escape(role.name)}</label>'
            for role in self.service.list_roles()
        )
        return f"""
        <section class=\"card\">
          <h1>Plantilla</h1>
          <form method=\"post\" action=\"{html.escape(action_url)}\" class=\"form\">
            <label>Nombre <input type=\"text\" name=\"name\" value=\"{html.escape(values['name'])}\" required /></label>
            <label>Descripción <input type=\"text\" name=\"description\" value=\"{html.escape(values['description'])}\" /></label>
            <label>Tipo <select name=\"type\">{type_options}</select></label>
            <fieldset><legend>Roles</legend>{role_boxes}</fieldset>
            <label class=\"checkbox\"><input type=\"checkbox\" name=\"active\" value=\"1\"{' checked' if values['active'] else ''} /> Activa</label>
            <label>Secciones
              <textarea name=\"sections\" rows=\"14\">{html.escape(values['sections'])}</textarea>
            </label>
            <p class=\"hint\">Una sección por línea con <code># Título | tristate</code> o <code># Título | binary</code>, seguida de sus ítems.</p>
            <button type=\"submit\">Guardar</button>
            <a href=\"/templates\">Cancelar</a>
          </form>
        </section>
        """

    def _render_toggle_confirm(self, template: ChecklistTemplate) -> str:
        verb = "desactivar" if template.active else "activar"
        return f"""
        <section class=\"card narrow\">
          <h1>¿Deseas {verb} la plantilla {html.escape(template.name)}?</h1>
          <form method=\"post\" action=\"/templates/{template.id}/toggle\" class=\"form\">
            <input type=\"hidden\" name=\"active\" value=\"{'0' if template.active else '1'}\" />
            <button type=\"submit\">Sí, {verb}</button>
            <a href=\"/templates\">Cancelar</a>
          </form>
        </section>
        """


def create_app(database_path: Optional[Path | str] = None, upload_dir: Optional[Path | str] = None) -> FleetChecklistWebApp:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    path = Path(database_path) if database_path else settings.database_path
    uploads = Path(upload_dir) if upload_dir else (None if database_path else settings.upload_dir)
    return FleetChecklistWebApp(path, uploads)


if __name__ == "__main__":  # pragma: no cover - manual execution helper
    settings = Settings.from_env()
    create_app().run(settings.host, settings.port)
