from __future__ import annotations

import logging
import threading
import time
import uuid
from datetime import datetime
from functools import wraps
from typing import Callable

from flask import (
    Flask,
    g,
    redirect,
    render_template,
    request,
    session,
    url_for,
)

from reply_desk.config import get_settings, load_dotenv
from reply_desk.dashboard import TABS, Dashboard
from reply_desk.engine import PAGE_SIZE_OPTIONS, FilterCriteria, MediaFilter
from reply_desk.marketplaces.base import FeedbackItem, ValidationError
from reply_desk.media import image_sources
from reply_desk.workflow import ReplyState, WorkflowError

logger = logging.getLogger(__name__)

load_dotenv()
app = Flask(__name__, template_folder="templates")
app.secret_key = get_settings().secret_key

DASHBOARDS: dict[str, Dashboard] = {}
_DASHBOARDS_LOCK = threading.Lock()
IDLE_TIMEOUT_SEC = 60 * 60
MAX_DASHBOARDS = 200

ANSWER_STATE_LABELS = {
    "published": "Опубликован",
    "none": "Не опубликован",
    "syncing": "На проверке",
    "unknown": "Неизвестно",
}


def _parse_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    text = str(value).strip()
    if not text:
        return None
    for fmt in ("%Y-%m-%dT%H:%M:%SZ", "%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S"):
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None


@app.template_filter("format_dt")
def format_dt(value: str | None) -> str:
    parsed = _parse_dt(value)
    if parsed is None:
        return str(value or "").strip()
    return parsed.strftime("%d-%m-%Y %H:%M")


@app.template_filter("format_duration")
def format_duration(seconds: int | None) -> str:
    if not seconds or seconds < 0:
        return ""
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}:{secs:02d}"


@app.template_filter("customer_activity")
def customer_activity(item: FeedbackItem) -> str:
    ordered = _parse_dt(item.last_order_created_at)
    if ordered is None:
        return ""
    reviewed = _parse_dt(item.created_at)
    if reviewed is None:
        return f"Последний заказ: {ordered.strftime('%d-%m-%Y')}"
    days = (reviewed.replace(tzinfo=None) - ordered.replace(tzinfo=None)).days
    if days <= 0:
        return "Заказал в день отзыва"
    return f"Последний заказ за {days} дн. до отзыва"


def _get_settings():
    settings = getattr(g, "settings", None)
    if settings is None:
        settings = get_settings()
        g.settings = settings
    return settings


def register_dashboard(dashboard: Dashboard) -> str:
    dashboard_id = uuid.uuid4().hex
    dashboard.touch()
    with _DASHBOARDS_LOCK:
        DASHBOARDS[dashboard_id] = dashboard
        dropped = _drop_idle_dashboards(keep=dashboard_id)
    for stale in dropped:
        stale.disconnect()
    if dropped:
        logger.info("Closed %s idle dashboard session(s)", len(dropped))
    return dashboard_id


def _drop_idle_dashboards(keep: str) -> list[Dashboard]:
    # caller holds _DASHBOARDS_LOCK
    now = time.monotonic()
    idle = [
        key
        for key, dashboard in DASHBOARDS.items()
        if key != keep and now - dashboard.last_active > IDLE_TIMEOUT_SEC
    ]
    dropped = [DASHBOARDS.pop(key) for key in idle]
    excess = len(DASHBOARDS) - MAX_DASHBOARDS
    if excess > 0:
        oldest = sorted(
            (key for key in DASHBOARDS if key != keep),
            key=lambda key: DASHBOARDS[key].last_active,
        )
        dropped.extend(DASHBOARDS.pop(key) for key in oldest[:excess])
    return dropped


def _lookup_dashboard() -> Dashboard | None:
    dashboard = getattr(g, "dashboard", None)
    if dashboard is not None:
        return dashboard
    dashboard_id = session.get("dashboard_id")
    with _DASHBOARDS_LOCK:
        dashboard = DASHBOARDS.get(dashboard_id) if dashboard_id else None
    if dashboard is not None:
        dashboard.touch()
        g.dashboard = dashboard
    return dashboard


def _remember_dashboard(dashboard: Dashboard) -> None:
    if _lookup_dashboard() is dashboard:
        return
    session["dashboard_id"] = register_dashboard(dashboard)
    g.dashboard = dashboard


def connected_required(func: Callable) -> Callable:
    @wraps(func)
    def wrapper(*args, **kwargs):
        dashboard = _lookup_dashboard()
        if dashboard is None or not dashboard.is_connected:
            return redirect(url_for("connect"))
        try:
            return func(dashboard, *args, **kwargs)
        except (ValidationError, WorkflowError) as exc:
            dashboard.error = str(exc)
            return redirect(url_for("index"))

    return wrapper


@app.route("/")
@connected_required
def index(dashboard: Dashboard):
    view = dashboard.view()
    workflow = dashboard.workflow
    engine = dashboard.engine
    context = {
        "dashboard": dashboard,
        "view": view,
        "engine": engine,
        "tabs": TABS,
        "drafts": workflow.drafts,
        "states": {item.id: workflow.state(item.id) for item in view.page_items},
        "reply_states": ReplyState,
        "media_filters": MediaFilter,
        "page_size_options": PAGE_SIZE_OPTIONS,
        "available_tags": engine.available_tags(),
        "answer_state_labels": ANSWER_STATE_LABELS,
        "image_sources": lambda url: image_sources(url, dashboard.settings.image_proxies),
    }
    return render_template("dashboard.html", **context)


@app.route("/connect", methods=["GET", "POST"])
def connect():
    settings = _get_settings()
    dashboard = _lookup_dashboard() or Dashboard(settings)
    if request.method == "POST":
        wb_token = request.form.get("wb_token")
        openai_key = request.form.get("openai_key")
        statistics_token = request.form.get("statistics_token")
        if _try_connect(dashboard, wb_token, openai_key, statistics_token):
            return redirect(url_for("index"))
    elif dashboard.is_connected:
        return redirect(url_for("index"))
    elif settings.wb_api_token and settings.openai_api_key and request.args.get("auto") != "0":
        if _try_connect(dashboard, settings.wb_api_token, settings.openai_api_key, settings.wb_statistics_token):
            logger.info("Connected with tokens from the environment")
            return redirect(url_for("index"))
    return render_template(
        "connect.html",
        dashboard=dashboard,
        wb_token=settings.wb_api_token or "",
        openai_key=settings.openai_api_key or "",
        statistics_token=settings.wb_statistics_token or "",
    )


def _try_connect(dashboard: Dashboard, wb_token, openai_key, statistics_token) -> bool:
    try:
        connected = dashboard.connect(wb_token, openai_key, statistics_token)
    except ValidationError as exc:
        dashboard.error = str(exc)
        return False
    if connected:
        _remember_dashboard(dashboard)
    return connected


@app.route("/disconnect", methods=["POST"])
def disconnect():
    dashboard_id = session.pop("dashboard_id", None)
    if dashboard_id:
        with _DASHBOARDS_LOCK:
            dashboard = DASHBOARDS.pop(dashboard_id, None)
        if dashboard is not None:
            dashboard.disconnect()
            logger.info("Dashboard session %s closed", dashboard_id[:8])
    return redirect(url_for("connect", auto="0"))


@app.route("/tab/<tab>", methods=["POST"])
@connected_required
def switch_tab(dashboard: Dashboard, tab: str):
    dashboard.switch_tab(tab)
    return redirect(url_for("index"))


@app.route("/refresh", methods=["POST"])
@connected_required
def refresh(dashboard: Dashboard):
    dashboard.refresh()
    return redirect(url_for("index"))


@app.route("/stats/refresh", methods=["POST"])
@connected_required
def refresh_stats(dashboard: Dashboard):
    dashboard.reload_stats()
    return redirect(url_for("index"))


@app.route("/load-more", methods=["POST"])
@connected_required
def load_more(dashboard: Dashboard):
    dashboard.load_more()
    return redirect(url_for("index"))


@app.route("/filter", methods=["POST"])
@connected_required
def apply_filter(dashboard: Dashboard):
    if request.form.get("reset"):
        dashboard.reset_filter()
    else:
        criteria = FilterCriteria.from_form(
            request.form.getlist("ratings"),
            request.form.get("media"),
            request.form.getlist("tags"),
        )
        dashboard.set_filter(criteria)
    return redirect(url_for("index"))


@app.route("/page", methods=["POST"])
@connected_required
def change_page(dashboard: Dashboard):
    dashboard.set_page(_parse_int(request.form.get("page"), 1))
    return redirect(url_for("index"))


@app.route("/page-size", methods=["POST"])
@connected_required
def change_page_size(dashboard: Dashboard):
    page_size = _parse_int(request.form.get("page_size"), None)
    if page_size is None:
        raise ValidationError("Укажите размер страницы.")
    dashboard.set_page_size(page_size)
    return redirect(url_for("index"))


@app.route("/settings", methods=["POST"])
@connected_required
def save_settings(dashboard: Dashboard):
    dashboard.set_instructions(request.form.get("instructions") or "")
    return redirect(url_for("index"))


@app.route("/feedbacks/<feedback_id>/generate", methods=["POST"])
@connected_required
def generate_reply(dashboard: Dashboard, feedback_id: str):
    dashboard.generate(feedback_id)
    return redirect(_feedback_anchor(feedback_id))


@app.route("/feedbacks/<feedback_id>/edit", methods=["POST"])
@connected_required
def toggle_edit(dashboard: Dashboard, feedback_id: str):
    text = request.form.get("response_text")
    draft = dashboard.workflow.draft(feedback_id)
    if text is not None and draft is not None and draft.editing:
        dashboard.update_draft(feedback_id, text)
    dashboard.toggle_edit(feedback_id)
    return redirect(_feedback_anchor(feedback_id))


@app.route("/feedbacks/<feedback_id>/draft", methods=["POST"])
@connected_required
def save_draft(dashboard: Dashboard, feedback_id: str):
    dashboard.update_draft(feedback_id, request.form.get("response_text") or "")
    return redirect(_feedback_anchor(feedback_id))


@app.route("/feedbacks/<feedback_id>/send", methods=["POST"])
@connected_required
def send_reply(dashboard: Dashboard, feedback_id: str):
    text = request.form.get("response_text")
    draft = dashboard.workflow.draft(feedback_id)
    if text is not None and draft is not None and draft.editing:
        dashboard.update_draft(feedback_id, text)
    dashboard.send(feedback_id)
    return redirect(url_for("index"))


@app.route("/feedbacks/<feedback_id>/discard", methods=["POST"])
@connected_required
def discard_draft(dashboard: Dashboard, feedback_id: str):
    dashboard.discard_draft(feedback_id)
    return redirect(_feedback_anchor(feedback_id))


@app.route("/feedbacks/<feedback_id>/orders")
@connected_required
def feedback_orders(dashboard: Dashboard, feedback_id: str):
    result = dashboard.recent_orders(feedback_id)
    if not result.ok:
        return redirect(url_for("index"))
    return render_template(
        "orders.html",
        dashboard=dashboard,
        feedback=dashboard.engine.get(feedback_id),
        orders=result.data or [],
    )


@app.route("/error/dismiss", methods=["POST"])
def dismiss_error():
    dashboard = _lookup_dashboard()
    if dashboard is not None:
        dashboard.clear_error()
    return redirect(url_for("index"))


def _parse_int(value: str | None, default: int | None) -> int | None:
    if value is None:
        return default
    value = value.strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _feedback_anchor(feedback_id: str) -> str:
    return url_for("index", _anchor=f"feedback-{feedback_id}")


def run() -> None:
    settings = get_settings()
    app.run(host=settings.host, port=settings.port, debug=False)


if __name__ == "__main__":
    run()
