"""
Operator console API: authentication, commands and exports over HTTP.
"""
import asyncio
import base64

import pytest

from ppid_bot.api.routes.operator import _event_stream
from ppid_bot.core.config import settings
from ppid_bot.core.exceptions import ErrorCode
from ppid_bot.db.models import Evaluation, EvaluationStatus, Recap, RecapStatus
from ppid_bot.domain.services.notification_bus import ErrorNotification
from ppid_bot.domain.services.whatsapp.connection import ConnectionState
from ppid_bot.state_machine import messages
from ppid_bot.state_machine.handlers import InboundMessage
from tests.conftest import CHAT, OPERATOR_HEADERS, make_index_with

BASE = "/api/operator"


async def say(container, text: str) -> None:
    await container.handler.handle(InboundMessage(chat_id=CHAT, text=text, push_name="Budi"))


class TestAuthentication:

    @pytest.mark.unit
    async def test_missing_key(self, test_client):
        response = await test_client.get(f"{BASE}/status")
        assert response.status_code == 401

    @pytest.mark.unit
    async def test_wrong_key(self, test_client):
        response = await test_client.get(f"{BASE}/status", headers={"X-Operator-API-Key": "nope"})
        assert response.status_code == 403

    @pytest.mark.unit
    async def test_unconfigured_key_refuses_everything(self, test_client, monkeypatch):
        monkeypatch.setattr(settings, "OPERATOR_API_KEY", "")
        response = await test_client.get(f"{BASE}/status", headers=OPERATOR_HEADERS)
        assert response.status_code == 403


class TestLifecycle:

    @pytest.mark.integration
    async def test_status(self, test_client):
        response = await test_client.get(f"{BASE}/status", headers=OPERATOR_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["running"] is True
        assert body["connection"]["state"] == "open"
        assert body["index"]["ready"] is False
        assert body["llm_provider"] == "fake-llm"

    @pytest.mark.integration
    async def test_stop_and_start(self, test_client):
        stopped = await test_client.post(f"{BASE}/stop", headers=OPERATOR_HEADERS)
        assert stopped.json()["running"] is False

        started = await test_client.post(f"{BASE}/start", headers=OPERATOR_HEADERS)
        assert started.json()["running"] is True

    @pytest.mark.integration
    async def test_logout_clears_session_and_notifies(self, test_client, container, fake_whatsapp, data_path):
        session_dir = data_path / "wa_session"
        session_dir.mkdir()
        (session_dir / "creds.json").write_text("{}", encoding="utf-8")
        queue = container.notifications.subscribe()

        response = await test_client.post(f"{BASE}/logout", headers=OPERATOR_HEADERS)

        assert response.status_code == 200
        assert fake_whatsapp.logged_out is True
        assert not session_dir.exists()
        assert container.runtime.connection.state == ConnectionState.CLOSE
        types = [queue.get_nowait().type for _ in range(queue.qsize())]
        assert types == ["connection", "logged-out"]


class TestConversations:

    @pytest.mark.integration
    async def test_manual_reply_learns_and_releases(self, test_client, container, fake_whatsapp, clock):
        await say(container, "Saya mau bicara dengan CS")
        clock.advance(5)
        await say(container, "Berapa biaya legalisir?")

        response = await test_client.post(
            f"{BASE}/manual-reply",
            json={"chat_id": CHAT, "message": "Legalisir gratis, Kak."},
            headers=OPERATOR_HEADERS,
        )

        assert response.status_code == 200
        assert response.json() == {"sent": True, "learned": True, "released": True}
        assert fake_whatsapp.texts_to(CHAT)[-1] == "Legalisir gratis, Kak."
        assert container.sessions.get(CHAT).handed_off is False
        faq = container.vector_store.index.chunks[-1]
        assert faq.type == "faq"
        assert "Berapa biaya legalisir?" in faq.content

    @pytest.mark.integration
    async def test_manual_reply_with_document(self, test_client, container, fake_whatsapp, clock):
        await say(container, "Saya mau bicara dengan CS")
        clock.advance(5)
        await say(container, "Minta formulir keberatan")

        response = await test_client.post(
            f"{BASE}/manual-reply",
            json={
                "chat_id": CHAT,
                "message": "Ini formulir keberatan, Kak.",
                "media": {
                    "mimetype": "application/pdf",
                    "filename": "keberatan.pdf",
                    "data": base64.b64encode(b"%PDF-1.4 isi").decode(),
                },
            },
            headers=OPERATOR_HEADERS,
        )

        assert response.json() == {"sent": True, "learned": True, "released": True}
        to, media, caption = fake_whatsapp.media[-1]
        assert (to, caption) == (CHAT, "Ini formulir keberatan, Kak.")
        assert media.data == b"%PDF-1.4 isi"
        assert media.is_image is False
        assert media.filename == "keberatan.pdf"
        assert fake_whatsapp.texts_to(CHAT)[-1] != "Ini formulir keberatan, Kak."
        assert container.sessions.get(CHAT).buffer[-1].text == "Ini formulir keberatan, Kak."
        assert "Minta formulir keberatan" in container.vector_store.index.chunks[-1].content

    @pytest.mark.integration
    async def test_manual_reply_image_without_caption(self, test_client, container, fake_whatsapp):
        await say(container, "hubungi cs dong")
        vectors_before = container.vector_store.index

        response = await test_client.post(
            f"{BASE}/manual-reply",
            json={
                "chat_id": CHAT,
                "media": {"mimetype": "image/png", "data": base64.b64encode(b"\x89PNG").decode()},
            },
            headers=OPERATOR_HEADERS,
        )

        assert response.json() == {"sent": True, "learned": False, "released": True}
        assert fake_whatsapp.media[-1][1].is_image is True
        assert container.sessions.get(CHAT).buffer[-1].text == messages.IMAGE_PLACEHOLDER
        assert container.vector_store.index is vectors_before

    @pytest.mark.integration
    async def test_manual_reply_rejects_bad_attachment(self, test_client, fake_whatsapp):
        response = await test_client.post(
            f"{BASE}/manual-reply",
            json={"chat_id": CHAT, "media": {"mimetype": "application/pdf", "data": "bukan base64!"}},
            headers=OPERATOR_HEADERS,
        )

        assert response.status_code == 422
        assert fake_whatsapp.media == []

    @pytest.mark.integration
    async def test_manual_reply_racing_auto_reply(self, container, fake_whatsapp, fake_llm, clock):
        """Operator reply and a bot answer on the same chat keep every buffer append"""
        await say(container, "Jam layanan?")
        clock.advance(5)

        await asyncio.gather(
            container.operator.manual_reply(CHAT, "Senin-Jumat 08.00-15.00, Kak."),
            say(container, "Alamat kantor di mana?"),
        )

        session = container.sessions.get(CHAT)
        texts = [m.text for m in session.buffer]
        assert session.last_question == "Alamat kantor di mana?"
        assert "Senin-Jumat 08.00-15.00, Kak." in texts
        assert "Alamat kantor di mana?" in texts
        assert len(session.buffer) == 5
        assert [m.role for m in session.buffer].count("assistant") == 3

    @pytest.mark.integration
    async def test_manual_reply_needs_connection(self, test_client, container):
        container.runtime.connection.update(ConnectionState.CLOSE)

        response = await test_client.post(
            f"{BASE}/manual-reply",
            json={"chat_id": CHAT, "message": "Halo"},
            headers=OPERATOR_HEADERS,
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == ErrorCode.TRANSPORT_UNAVAILABLE.value

    @pytest.mark.integration
    async def test_manual_reply_send_failure(self, test_client, fake_whatsapp):
        fake_whatsapp.fail_sends = True

        response = await test_client.post(
            f"{BASE}/manual-reply",
            json={"chat_id": CHAT, "message": "Halo"},
            headers=OPERATOR_HEADERS,
        )

        assert response.status_code == 502

    @pytest.mark.integration
    async def test_empty_manual_reply_rejected(self, test_client):
        response = await test_client.post(
            f"{BASE}/manual-reply",
            json={"chat_id": CHAT, "message": ""},
            headers=OPERATOR_HEADERS,
        )
        assert response.status_code == 422

    @pytest.mark.integration
    async def test_release_unknown_chat(self, test_client):
        response = await test_client.post(
            f"{BASE}/release-handover", json={"chat_id": CHAT}, headers=OPERATOR_HEADERS
        )
        assert response.status_code == 404

    @pytest.mark.integration
    async def test_close_conversation_sends_survey_once(self, test_client, container, fake_whatsapp):
        await say(container, "Jam layanan?")

        first = await test_client.post(f"{BASE}/close-conversation", json={"chat_id": CHAT}, headers=OPERATOR_HEADERS)
        second = await test_client.post(f"{BASE}/close-conversation", json={"chat_id": CHAT}, headers=OPERATOR_HEADERS)

        assert first.json() == {"sent": True}
        assert second.json()["sent"] is False
        assert fake_whatsapp.texts_to(CHAT)[-1] == messages.operator_close_survey_prompt("Budi")
        assert container.sessions.get(CHAT).survey_pending is True


class TestKnowledge:

    @pytest.mark.integration
    async def test_train_resolves_gap(self, test_client, container):
        await container.knowledge_gaps.log_gap("Alamat kantor?", CHAT, "Budi")

        response = await test_client.post(
            f"{BASE}/train",
            json={"question": "Alamat kantor?", "answer": "Jl. Imam Bonjol 190 Semarang"},
            headers=OPERATOR_HEADERS,
        )

        assert response.json() == {"success": True, "gap_resolved": True}
        assert await container.knowledge_gaps.list_gaps() == []

    @pytest.mark.integration
    async def test_train_embedding_failure(self, test_client, fake_embedder):
        fake_embedder.fail = True

        response = await test_client.post(
            f"{BASE}/train", json={"question": "q?", "answer": "a"}, headers=OPERATOR_HEADERS
        )

        assert response.status_code == 502

    @pytest.mark.integration
    async def test_test_prompt(self, test_client, container, fake_embedder, fake_llm):
        await container.vector_store.replace(make_index_with([("Jam layanan 08.00", "markdown")], fake_embedder))
        fake_llm.replies.append("Buka jam 08.00 Kak.")

        response = await test_client.post(
            f"{BASE}/test-prompt", json={"query": "Jam layanan 08.00"}, headers=OPERATOR_HEADERS
        )

        body = response.json()
        assert body["response"] == "Buka jam 08.00 Kak."
        assert body["context_found"] is True

    @pytest.mark.integration
    async def test_knowledge_gap_list_and_dismiss(self, test_client, container):
        await container.knowledge_gaps.log_gap("Syarat magang?", CHAT, "Budi")

        listed = await test_client.get(f"{BASE}/knowledge-gaps", headers=OPERATOR_HEADERS)
        assert [g["question"] for g in listed.json()] == ["Syarat magang?"]

        dismissed = await test_client.post(
            f"{BASE}/knowledge-gaps/dismiss", json={"question": "Syarat magang?"}, headers=OPERATOR_HEADERS
        )
        again = await test_client.post(
            f"{BASE}/knowledge-gaps/dismiss", json={"question": "Syarat magang?"}, headers=OPERATOR_HEADERS
        )
        assert dismissed.status_code == 200
        assert again.status_code == 404

    @pytest.mark.integration
    async def test_generate_questions(self, test_client, container, fake_llm, fake_embedder):
        await container.vector_store.replace(
            make_index_with([("Layanan PPID: permohonan informasi dan keberatan.", "markdown")], fake_embedder)
        )
        fake_llm.replies.append("Bagaimana cara mengajukan keberatan?\nApa syarat izin penelitian?")

        response = await test_client.post(f"{BASE}/generate-questions", headers=OPERATOR_HEADERS)

        assert response.json()["added"] == 2
        assert "permohonan informasi" in fake_llm.calls[0]["user_prompt"] + fake_llm.calls[0]["system_prompt"]
        gaps = await container.knowledge_gaps.list_gaps()
        assert {g.contact for g in gaps} == {"AI Analysis"}

    @pytest.mark.integration
    async def test_generate_questions_without_index(self, test_client, container, fake_llm):
        fake_llm.replies.append("Pertanyaan karangan?")

        response = await test_client.post(f"{BASE}/generate-questions", headers=OPERATOR_HEADERS)

        assert response.status_code == 200
        assert response.json() == {"questions": [], "added": 0}
        assert fake_llm.calls == []
        assert await container.knowledge_gaps.list_gaps() == []

    @pytest.mark.integration
    async def test_reindex_runs_in_background(self, test_client, container, data_path):
        docs = data_path / "docs"
        docs.mkdir()
        (docs / "layanan.md").write_text("Permohonan informasi publik bisa daring.", encoding="utf-8")

        response = await test_client.post(f"{BASE}/reindex", headers=OPERATOR_HEADERS)
        assert response.status_code == 202

        await container.operator._reindex_task
        assert len(container.vector_store.index) == 1

        documents = await test_client.get(f"{BASE}/documents", headers=OPERATOR_HEADERS)
        assert [d["name"] for d in documents.json()] == ["layanan.md"]


class TestSettings:

    @pytest.mark.integration
    async def test_update_and_mask(self, test_client, container):
        response = await test_client.put(
            f"{BASE}/settings",
            json={"humor_level": 60, "groq_api_key": "gsk_1234567890abcdef"},
            headers=OPERATOR_HEADERS,
        )

        body = response.json()
        assert body["humor_level"] == 60
        assert "1234567890" not in body["groq_api_key"]
        assert container.runtime.settings.humor_level == 60
        assert (await container.repositories.settings.load()).humor_level == 60

    @pytest.mark.integration
    @pytest.mark.parametrize("payload", [{"humor_level": 101}, {"temperature": -1}, {"llm_provider": "openai"}])
    async def test_invalid_values_rejected(self, test_client, payload):
        response = await test_client.put(f"{BASE}/settings", json=payload, headers=OPERATOR_HEADERS)
        assert response.status_code == 422


class TestAnalytics:

    @pytest.mark.integration
    async def test_survey_stats(self, test_client, container):
        await container.surveys.record_survey(CHAT, 4)

        response = await test_client.get(f"{BASE}/survey-stats", headers=OPERATOR_HEADERS)

        assert response.json()["distribution"] == [0, 0, 0, 1, 0]

    @pytest.mark.integration
    async def test_resolve_evaluation(self, test_client, container):
        evaluation = Evaluation(chat_id=CHAT, rating=1, feedback="lambat")
        await container.repositories.evaluations.add(evaluation)

        ok = await test_client.post(
            f"{BASE}/evaluations/{evaluation.id}/resolve", json={"action": "trained"}, headers=OPERATOR_HEADERS
        )
        pending = await test_client.post(
            f"{BASE}/evaluations/{evaluation.id}/resolve", json={"action": "pending"}, headers=OPERATOR_HEADERS
        )
        missing = await test_client.post(
            f"{BASE}/evaluations/nope/resolve", json={"action": "ignored"}, headers=OPERATOR_HEADERS
        )

        assert ok.status_code == 200
        assert pending.status_code == 400
        assert missing.status_code == 404
        listed = await test_client.get(f"{BASE}/evaluations", headers=OPERATOR_HEADERS)
        assert listed.json()[0]["status"] == EvaluationStatus.TRAINED.value

    @pytest.mark.integration
    async def test_recaps_and_exports(self, test_client, container):
        for name in ("Budi", "Sari"):
            await container.repositories.recaps.add(
                Recap(chat_id=CHAT, customer_name=name, summary="Tanya jadwal", category="informasi",
                      rating=5, status=RecapStatus.HANDLED)
            )

        limited = await test_client.get(f"{BASE}/recaps", params={"limit": 1}, headers=OPERATOR_HEADERS)
        assert [r["customer_name"] for r in limited.json()] == ["Sari"]

        csv_response = await test_client.get(f"{BASE}/recaps/export.csv", headers=OPERATOR_HEADERS)
        assert csv_response.headers["content-type"].startswith("text/csv")
        assert "attachment" in csv_response.headers["content-disposition"]
        assert csv_response.content.startswith("\ufeff".encode("utf-8"))
        assert "Sari" in csv_response.text

        xlsx_response = await test_client.get(f"{BASE}/recaps/export.xlsx", headers=OPERATOR_HEADERS)
        assert xlsx_response.status_code == 200
        assert xlsx_response.content[:2] == b"PK"


class _FakeRequest:
    def __init__(self, connected_polls: int):
        self._remaining = connected_polls

    async def is_disconnected(self) -> bool:
        self._remaining -= 1
        return self._remaining < 0


@pytest.mark.integration
async def test_event_stream_replays_state_then_forwards(container):
    container.runtime.connection.set_qr("qr-data")
    stream = _event_stream(_FakeRequest(connected_polls=1), container)

    first = await stream.__anext__()
    second = await stream.__anext__()
    container.notifications.publish(ErrorNotification(message="gateway down"))
    third = await stream.__anext__()

    assert first.startswith("event: connection\n")
    assert second.startswith("event: qr\n")
    assert '"qr":"qr-data"' in second
    assert third.startswith("event: error\n")
    assert third.endswith("\n\n")

    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()
    assert container.notifications.subscriber_count == 0


class TestHealth:

    @pytest.mark.integration
    async def test_liveness(self, test_client):
        response = await test_client.get("/health")
        assert response.json() == {"status": "healthy"}

    @pytest.mark.integration
    async def test_readiness(self, test_client, container, fake_embedder, monkeypatch):
        import ppid_bot.domain.services.health_service as health_service

        async def ollama_ok():
            return "ok"

        monkeypatch.setattr(health_service, "_check_ollama", ollama_ok)

        degraded = await test_client.get("/health/ready")
        assert degraded.status_code == 503
        assert degraded.json()["vector_index"] == "error: index_not_built"

        await container.vector_store.replace(make_index_with([("x", "markdown")], fake_embedder))
        ready = await test_client.get("/health/ready")
        assert ready.status_code == 200
        assert ready.json() == {"status": "healthy", "whatsapp_gateway": "ok", "ollama": "ok", "vector_index": "ok"}

    @pytest.mark.integration
    async def test_readiness_disconnected_gateway(self, test_client, fake_whatsapp, monkeypatch):
        import ppid_bot.domain.services.health_service as health_service

        async def ollama_ok():
            return "ok"

        monkeypatch.setattr(health_service, "_check_ollama", ollama_ok)
        fake_whatsapp.state = "connecting"

        response = await test_client.get("/health/ready")

        assert response.json()["whatsapp_gateway"] == "error: whatsapp_disconnected"
