"""
REST API routes for Bitácora.

Organized into logical groups:
- Analysis: classify an input (single or multi-topic), check completions, suggest threads
- Entries: save confirmed analyses, list/get/delete notes, related notes, thread assignment
- Books, threads and tasks
- Ask, period summaries and person summaries

All routes except /health require authentication and are user-scoped.
Analysis never writes; only the POST /entries routes persist.
"""

import logging
from datetime import date, timedelta

from flask import Blueprint, g, jsonify, request
from pydantic import ValidationError

from .auth import require_auth
from .database import utcnow
from .services.container import get_services
from .services.models import AnalysisResult, Attachment, MatchResult, MultiTopicAnalysis, TaskPriority
from .services.provider import ProviderError, RateLimitError
from .services.storage import NotFoundError
from .services.summarizer import PERIOD_DAYS

logger = logging.getLogger(__name__)

bp = Blueprint("api", __name__)

MAX_LIST_LIMIT = 200


def _json_error(message: str, status: int = 400):
    return jsonify({"error": message}), status


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _text_and_attachment(data: dict):
    text = data.get("text") or ""
    if not isinstance(text, str):
        raise ValueError("Body field 'text' must be a string")
    raw_attachment = data.get("attachment")
    attachment = Attachment.model_validate(raw_attachment) if raw_attachment else None
    if not text.strip() and attachment is None:
        raise ValueError("Body field 'text' is required")
    return text, attachment


def _limit_arg(default: int) -> int:
    try:
        limit = int(request.args.get("limit", default))
    except ValueError:
        raise ValueError("Query param 'limit' must be an integer")
    return max(1, min(limit, MAX_LIST_LIMIT))


# ============================================================================
# ERROR MAPPING
# ============================================================================


@bp.errorhandler(RateLimitError)
def _handle_rate_limit(e: RateLimitError):
    return jsonify({"error": e.user_message, "code": "rate_limited"}), 429


@bp.errorhandler(ProviderError)
def _handle_provider_error(e: ProviderError):
    logger.error("Provider error: %s", e)
    return _json_error("The AI provider failed to process the request", 502)


@bp.errorhandler(NotFoundError)
def _handle_not_found(e: NotFoundError):
    return _json_error(str(e) or "Not found", 404)


@bp.errorhandler(ValidationError)
def _handle_validation_error(e: ValidationError):
    return _json_error(f"Invalid request body: {e.error_count()} validation error(s)", 400)


@bp.errorhandler(ValueError)
def _handle_value_error(e: ValueError):
    return _json_error(str(e), 400)


# ============================================================================
# ANALYSIS ENDPOINTS
# ============================================================================


@bp.post("/analyze")
@require_auth
def analyze():
    """
    Classify an input as a single note. Nothing is saved.

    Body:
        { "text": str, "attachment": Attachment?, "target_book_id": str? }

    Returns:
        AnalysisResult JSON
    """
    data = _body()
    text, attachment = _text_and_attachment(data)
    svc = get_services()

    context = svc.pipeline.build_context(g.user_id)
    result = svc.pipeline.ingest(text, attachment, context, target_book_id=data.get("target_book_id"))
    return jsonify(result.model_dump(mode="json"))


@bp.post("/analyze/multi-topic")
@require_auth
def analyze_multi_topic():
    """
    Split an input into per-notebook topics. Nothing is saved.

    Body:
        { "text": str, "attachment": Attachment? }
    """
    text, attachment = _text_and_attachment(_body())
    svc = get_services()

    context = svc.pipeline.build_context(g.user_id)
    result = svc.pipeline.ingest_multi_topic(text, attachment, context)
    return jsonify(result.model_dump(mode="json"))


@bp.post("/entries/check-completion")
@require_auth
def check_completion():
    """
    Does this input report completion of an existing task?

    Body:
        { "text": str }
    """
    text, _ = _text_and_attachment(_body())
    svc = get_services()

    context = svc.pipeline.build_context(g.user_id)
    return jsonify(svc.pipeline.check_completion(text, context).model_dump(mode="json"))


@bp.post("/entries/suggest-thread")
@require_auth
def suggest_thread():
    """
    Suggest an existing or new conversation thread for an input.

    Body:
        { "text": str, "book_id": str? }
    """
    data = _body()
    text, _ = _text_and_attachment(data)
    svc = get_services()

    context = svc.pipeline.build_context(g.user_id)
    result = svc.pipeline.suggest_thread(text, context, book_id=data.get("book_id"))
    return jsonify(result.model_dump(mode="json"))


# ============================================================================
# ENTRY ENDPOINTS
# ============================================================================


@bp.post("/entries")
@require_auth
def create_entry():
    """
    Save a confirmed single-topic analysis.

    Body:
        {
          "analysis": AnalysisResult,
          "original_text": str,
          "thread_id": str?,
          "completion": MatchResult?
        }

    Returns:
        201 with the saved Entry
    """
    data = _body()
    if not data.get("analysis"):
        return _json_error("Body field 'analysis' is required")

    analysis = AnalysisResult.model_validate(data["analysis"])
    completion = MatchResult.model_validate(data["completion"]) if data.get("completion") else None
    original_text = data.get("original_text") or analysis.summary

    svc = get_services()
    entry = svc.pipeline.save_entry(
        g.user_id,
        analysis,
        original_text,
        thread_id=data.get("thread_id"),
        completion=completion,
    )
    return jsonify(entry.model_dump(mode="json")), 201


@bp.post("/entries/topics")
@require_auth
def create_topic_entries():
    """
    Save every topic of a confirmed multi-topic analysis as its own note.

    Body:
        { "analysis": MultiTopicAnalysis }
    """
    data = _body()
    if not data.get("analysis"):
        return _json_error("Body field 'analysis' is required")

    analysis = MultiTopicAnalysis.model_validate(data["analysis"])
    if not analysis.topics:
        return _json_error("Analysis has no topics")

    svc = get_services()
    entries = svc.pipeline.save_topics(g.user_id, analysis)
    return jsonify({"entries": [e.model_dump(mode="json") for e in entries]}), 201


@bp.get("/entries")
@require_auth
def list_entries():
    """
    List notes newest first.

    Query params:
        - limit: Max results (default: 50)
        - book_id / thread_id: Optional filters
    """
    svc = get_services()
    limit = _limit_arg(50)
    entries = svc.storage.list_entries(
        g.user_id,
        limit=limit,
        book_id=request.args.get("book_id"),
        thread_id=request.args.get("thread_id"),
    )
    return jsonify({"entries": [e.model_dump(mode="json") for e in entries], "total": len(entries), "limit": limit})


@bp.get("/entries/<entry_id>")
@require_auth
def get_entry(entry_id: str):
    svc = get_services()
    entry = svc.storage.get_entry(g.user_id, entry_id)
    if not entry:
        return _json_error("Entry not found", 404)
    return jsonify(entry.model_dump(mode="json"))


@bp.patch("/entries/<entry_id>")
@require_auth
def update_entry(entry_id: str):
    """
    Edit a note's summary or its rewritten text.

    Body (at least one):
        { "summary": str?, "rewritten_text": str? }
    """
    data = _body()
    summary = data.get("summary")
    rewritten_text = data.get("rewritten_text")
    if summary is None and rewritten_text is None:
        return _json_error("Body must include 'summary' or 'rewritten_text'")
    if not all(v is None or isinstance(v, str) for v in (summary, rewritten_text)):
        return _json_error("Fields 'summary' and 'rewritten_text' must be strings")

    svc = get_services()
    entry = svc.pipeline.update_entry(g.user_id, entry_id, summary=summary, rewritten_text=rewritten_text)
    return jsonify(entry.model_dump(mode="json"))


@bp.delete("/entries/<entry_id>")
@require_auth
def delete_entry(entry_id: str):
    """Delete a note with its tasks, entities, embeddings and relations."""
    svc = get_services()
    if not svc.storage.delete_entry(g.user_id, entry_id):
        return _json_error("Entry not found", 404)
    return jsonify({"success": True, "id": entry_id})


@bp.get("/entries/<entry_id>/related")
@require_auth
def related_entries(entry_id: str):
    """
    Notes linked to this one by semantic similarity, strongest first.

    Returns:
        JSON: {"related": [{"entry": Entry, "strength": float}, ...]}
    """
    user_id = g.user_id
    svc = get_services()
    if not svc.storage.get_entry(user_id, entry_id):
        return _json_error("Entry not found", 404)

    relations = svc.storage.list_relations(user_id, entry_id)
    others = svc.storage.get_entries_by_ids(user_id, [r.other_end(entry_id) for r in relations])
    by_id = {e.id: e for e in others}

    related = []
    for relation in relations:
        other = by_id.get(relation.other_end(entry_id))
        if other:
            related.append({"entry": other.model_dump(mode="json"), "strength": relation.strength})
    return jsonify({"related": related})


@bp.post("/entries/<entry_id>/thread")
@require_auth
def assign_thread(entry_id: str):
    """
    Put a note in a thread (null removes it). The note follows the thread's notebook.

    Body:
        { "thread_id": str | null }
    """
    data = _body()
    if "thread_id" not in data:
        return _json_error("Body field 'thread_id' is required")

    svc = get_services()
    entry = svc.pipeline.assign_thread(g.user_id, entry_id, data.get("thread_id"))
    return jsonify(entry.model_dump(mode="json"))


# ============================================================================
# BOOKS, THREADS AND TASKS
# ============================================================================


@bp.get("/books")
@require_auth
def list_books():
    svc = get_services()
    books = svc.storage.list_books(g.user_id)
    return jsonify({"books": [b.model_dump(mode="json") for b in books]})


@bp.get("/threads")
@require_auth
def list_threads():
    svc = get_services()
    threads = svc.storage.list_threads(g.user_id, book_id=request.args.get("book_id"))
    return jsonify({"threads": [t.model_dump(mode="json") for t in threads]})


@bp.post("/threads")
@require_auth
def create_thread():
    """
    Body:
        { "title": str, "book_id": str }
    """
    data = _body()
    title = (data.get("title") or "").strip()
    book_id = data.get("book_id")
    if not title or not book_id:
        return _json_error("Body fields 'title' and 'book_id' are required")

    svc = get_services()
    thread = svc.pipeline.create_thread(g.user_id, title, book_id)
    return jsonify(thread.model_dump(mode="json")), 201


@bp.patch("/tasks/<task_id>")
@require_auth
def update_task(task_id: str):
    """
    Edit a task or mark it done/undone.

    Body (all optional):
        { "description", "assignee", "due_date" (YYYY-MM-DD), "priority", "is_done", "completion_notes" }
    """
    data = _body()
    if not data:
        return _json_error("No fields to update")

    due_date = None
    if data.get("due_date"):
        try:
            due_date = date.fromisoformat(data["due_date"])
        except (TypeError, ValueError):
            return _json_error("Field 'due_date' must be YYYY-MM-DD")

    priority = TaskPriority(data["priority"]) if data.get("priority") else None
    is_done = data.get("is_done")
    if is_done is not None and not isinstance(is_done, bool):
        return _json_error("Field 'is_done' must be a boolean")

    svc = get_services()
    task = svc.storage.update_task(
        g.user_id,
        task_id,
        description=data.get("description"),
        assignee=data.get("assignee"),
        due_date=due_date,
        priority=priority,
        is_done=is_done,
        completion_notes=data.get("completion_notes"),
    )
    if task is None:
        return _json_error("Task not found", 404)
    return jsonify(task.model_dump(mode="json"))


# ============================================================================
# ASK AND SUMMARIES
# ============================================================================


@bp.post("/ask")
@require_auth
def ask():
    """
    Ask a natural-language question about your notes.

    Body:
        { "question": str }

    Returns:
        { "answer_markdown": str, "cited_entry_ids": [str] }
    """
    user_id = g.user_id
    data = _body()
    question = (data.get("question") or "").strip()
    if not question:
        return _json_error("Body field 'question' is required")

    svc = get_services()
    answer = svc.asker.answer(
        question,
        svc.storage.list_books(user_id),
        svc.storage.list_entries(user_id, limit=50),
        svc.storage.list_tasks(user_id, limit=100),
    )
    return jsonify(answer.model_dump(mode="json"))


@bp.post("/summary")
@require_auth
def summarize_period():
    """
    Executive summary of the last day, week or month.

    Body:
        { "period": "day" | "week" | "month" }
    """
    period = _body().get("period", "week")
    if period not in PERIOD_DAYS:
        return _json_error("Body field 'period' must be one of: day, week, month")

    svc = get_services()
    since = utcnow() - timedelta(days=PERIOD_DAYS[period])
    entries = svc.storage.list_entries(g.user_id, since=since)
    digest = svc.summarizer.summarize(entries, period)
    return jsonify({**digest.model_dump(mode="json"), "period": period, "entry_count": len(entries)})


@bp.get("/people/<person_name>/summary")
@require_auth
def person_summary(person_name: str):
    svc = get_services()
    summary = svc.person_summaries.get_summary(g.user_id, person_name)
    if summary is None:
        return _json_error("No notes mention this person", 404)
    return jsonify(summary.model_dump(mode="json"))


# ============================================================================
# UTILITY ENDPOINTS
# ============================================================================


@bp.get("/health")
def health():
    """Health check endpoint."""
    return jsonify({"status": "ok"})
