import dataclasses
import time
from unittest.mock import MagicMock, patch

import pytest

from conftest import FakeGenerator, FakeSource, build_item
from reply_desk import web
from reply_desk.dashboard import Dashboard
from reply_desk.marketplaces.base import AggregateStats, ApiResult, Order


@pytest.fixture
def source(photo):
    fake = FakeSource(
        pages=[[build_item("X", photos=(photo,)), build_item("Y", rating=1, tags=("Брак",))]]
    )
    fake.session = MagicMock()
    return fake


@pytest.fixture
def dashboard(settings, source):
    with patch("reply_desk.dashboard.WildberriesClient", return_value=source), patch(
        "reply_desk.dashboard.ReplyGenerator", return_value=FakeGenerator(["Спасибо!"])
    ):
        board = Dashboard(settings)
        board.connect("wb-token", "sk-test")
    return board


@pytest.fixture
def client(dashboard):
    web.app.config["TESTING"] = True
    dashboard_id = web.register_dashboard(dashboard)
    with web.app.test_client() as test_client:
        with test_client.session_transaction() as sess:
            sess["dashboard_id"] = dashboard_id
        yield test_client
    web.DASHBOARDS.pop(dashboard_id, None)


def test_index_redirects_to_connect_without_session():
    web.app.config["TESTING"] = True
    with web.app.test_client() as test_client:
        resp = test_client.get("/")

    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/connect")


def test_connect_with_missing_token_shows_error():
    web.app.config["TESTING"] = True
    with web.app.test_client() as test_client:
        resp = test_client.post("/connect", data={"wb_token": "", "openai_key": "sk"})

    assert resp.status_code == 200
    assert "Введите оба токена" in resp.get_data(as_text=True)


def test_index_renders_cards_and_stats(client):
    resp = client.get("/")

    body = resp.get_data(as_text=True)
    assert resp.status_code == 200
    assert 'id="feedback-X"' in body
    assert 'id="feedback-Y"' in body
    assert "Без ответа: 3" in body
    assert "https://proxy.example/" in body


def test_filter_route_updates_criteria(client, dashboard):
    client.post("/filter", data={"ratings": ["1"], "media": "any"})

    assert [item.id for item in dashboard.view().visible] == ["Y"]

    client.post("/filter", data={"reset": "1"})
    assert len(dashboard.view().visible) == 2


def test_generate_edit_and_send_flow(client, dashboard, source):
    client.post("/feedbacks/X/generate")
    assert dashboard.workflow.draft("X").text == "Спасибо!"

    client.post("/feedbacks/X/edit")
    client.post("/feedbacks/X/send", data={"response_text": "Спасибо, Анна!"})

    assert source.reply_calls == [("X", "Спасибо, Анна!")]
    assert dashboard.engine.get("X") is None
    assert dashboard.stats.count_unanswered == 2


def test_workflow_error_becomes_banner(client, dashboard):
    resp = client.post("/feedbacks/X/send")

    assert resp.status_code == 302
    assert dashboard.error == "Для этого отзыва нет черновика."
    assert "Для этого отзыва нет черновика." in client.get("/").get_data(as_text=True)

    client.post("/error/dismiss")
    assert dashboard.error == ""


def test_load_more_and_page_size(client, dashboard, source):
    source.pages = [[build_item("Z")]]
    dashboard.engine.has_more = True

    client.post("/load-more")
    client.post("/page-size", data={"page_size": "20"})

    assert dashboard.engine.can_load_more is False
    assert dashboard.engine.page_size == 20
    assert source.fetch_calls[-1] == (False, 3, 2)


def test_load_more_noop_when_exhausted(client, dashboard, source):
    calls = len(source.fetch_calls)

    client.post("/load-more")

    assert dashboard.engine.has_more is False
    assert len(source.fetch_calls) == calls


def test_bad_page_size_sets_error(client, dashboard):
    client.post("/page-size", data={"page_size": "7"})

    assert "Размер страницы" in dashboard.error


def test_refresh_failure_shows_error(client, dashboard, source):
    source.pages = [ApiResult.failure("HTTP error! status: 503")]

    client.post("/refresh")

    assert dashboard.error == "Ошибка загрузки: HTTP error! status: 503"


def test_disconnect_forgets_dashboard(client, dashboard):
    resp = client.post("/disconnect")

    assert resp.headers["Location"].endswith("/connect?auto=0")
    assert dashboard.is_connected is False


def test_format_filters():
    item = build_item(
        "1",
        created_at="2024-06-10T10:00:00Z",
        last_order_created_at="2024-06-01T09:00:00Z",
    )

    assert web.format_dt("2024-06-10T10:00:00Z") == "10-06-2024 10:00"
    assert web.format_dt("not a date") == "not a date"
    assert web.format_duration(75) == "1:15"
    assert web.format_duration(None) == ""
    assert web.customer_activity(item) == "Последний заказ за 9 дн. до отзыва"
    assert web.customer_activity(build_item("2")) == ""


def test_anonymous_requests_do_not_register_dashboards(settings):
    web.app.config["TESTING"] = True
    before = len(web.DASHBOARDS)
    with patch("reply_desk.web.get_settings", return_value=settings), web.app.test_client() as test_client:
        test_client.get("/")
        test_client.get("/connect")
        test_client.post("/error/dismiss")

    assert len(web.DASHBOARDS) == before


def test_failed_connect_is_not_registered(settings, source):
    web.app.config["TESTING"] = True
    source.stats = ApiResult.failure("HTTP error! status: 401")
    before = len(web.DASHBOARDS)
    with patch("reply_desk.dashboard.WildberriesClient", return_value=source), web.app.test_client() as test_client:
        resp = test_client.post("/connect", data={"wb_token": "bad", "openai_key": "sk"})

    assert resp.status_code == 200
    assert "Ошибка подключения к WB" in resp.get_data(as_text=True)
    assert len(web.DASHBOARDS) == before


def test_idle_dashboards_are_closed(monkeypatch, settings, dashboard, source):
    monkeypatch.setattr(web, "DASHBOARDS", {})
    idle_id = web.register_dashboard(dashboard)
    dashboard.last_active = time.monotonic() - web.IDLE_TIMEOUT_SEC - 1

    fresh_id = web.register_dashboard(Dashboard(settings))

    assert list(web.DASHBOARDS) == [fresh_id]
    assert idle_id not in web.DASHBOARDS
    source.session.close.assert_called_once()
    assert dashboard.is_connected is False


def test_registry_is_capped(monkeypatch, settings):
    monkeypatch.setattr(web, "DASHBOARDS", {})
    monkeypatch.setattr(web, "MAX_DASHBOARDS", 2)
    first = web.register_dashboard(Dashboard(settings))
    web.DASHBOARDS[first].last_active -= 10
    second = web.register_dashboard(Dashboard(settings))
    third = web.register_dashboard(Dashboard(settings))

    assert set(web.DASHBOARDS) == {second, third}


def test_connect_page_uses_environment_tokens(settings, source):
    web.app.config["TESTING"] = True
    env_settings = dataclasses.replace(settings, wb_api_token="wb-env", openai_api_key="sk-env")
    with patch("reply_desk.web.get_settings", return_value=env_settings), patch(
        "reply_desk.dashboard.WildberriesClient", return_value=source
    ) as wb_client, patch("reply_desk.dashboard.ReplyGenerator", return_value=FakeGenerator()):
        with web.app.test_client() as test_client:
            resp = test_client.get("/connect")
            with test_client.session_transaction() as sess:
                dashboard_id = sess["dashboard_id"]

            assert resp.status_code == 302
            assert resp.headers["Location"].endswith("/")
            wb_client.assert_called_once_with("wb-env", timeout=5)
            assert web.DASHBOARDS[dashboard_id].is_connected

            opted_out = test_client.post("/disconnect")
            page = test_client.get(opted_out.headers["Location"])

    assert page.status_code == 200
    assert wb_client.call_count == 1
    assert dashboard_id not in web.DASHBOARDS


def test_refresh_stats_route(client, dashboard, source):
    source.stats = ApiResult.success(AggregateStats(count_unanswered=7, valuation=4.5))

    client.post("/stats/refresh")

    assert dashboard.stats.count_unanswered == 7
    assert "Без ответа: 7" in client.get("/").get_data(as_text=True)


def test_save_draft_keeps_editing(client, dashboard):
    client.post("/feedbacks/X/generate")
    client.post("/feedbacks/X/edit")

    body = client.get("/").get_data(as_text=True)
    client.post("/feedbacks/X/draft", data={"response_text": "Спасибо за покупку!"})

    assert "/feedbacks/X/draft" in body
    draft = dashboard.workflow.draft("X")
    assert draft.text == "Спасибо за покупку!"
    assert draft.editing is True


def test_save_draft_outside_edit_mode_sets_error(client, dashboard):
    client.post("/feedbacks/X/generate")

    client.post("/feedbacks/X/draft", data={"response_text": "другой текст"})

    assert dashboard.workflow.draft("X").text == "Спасибо!"
    assert dashboard.error == "Черновик не в режиме редактирования."


def test_discard_route_drops_draft(client, dashboard):
    client.post("/feedbacks/X/generate")

    resp = client.post("/feedbacks/X/discard")

    assert resp.headers["Location"].endswith("/#feedback-X")
    assert dashboard.workflow.draft("X") is None


def test_orders_page_lists_orders(client, dashboard):
    dashboard.statistics = MagicMock()
    dashboard.statistics.orders_for_article.return_value = ApiResult.success(
        [
            Order(
                order_id="srid-777",
                created_at="2024-06-01T10:00:00",
                nm_id=12345,
                supplier_article="MUG-1",
                total_price=990.0,
                is_cancel=False,
            )
        ]
    )

    resp = client.get("/feedbacks/X/orders")

    body = resp.get_data(as_text=True)
    assert resp.status_code == 200
    assert "srid-777" in body
    assert "01-06-2024 10:00" in body
    assert "Артикул: MUG-1" in body


def test_orders_page_without_statistics_token(client, dashboard):
    resp = client.get("/feedbacks/X/orders")

    assert resp.status_code == 302
    assert dashboard.error == "Токен статистики WB не указан."
