import os
import logging
from fastapi import FastAPI, Depends, HTTPException, Response as HTTPResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sqlalchemy import select, func
from dotenv import load_dotenv

import pandas as pd

from db import Base, engine, get_db
from models import Form, Question, Response, Answer
from schemas import FormCreate, FormOut, ResponseCreate, IssueTokens, ValidateToken, AccessTokenOut
from security import verify_admin
from errors import AccessTokenError, StoreUnavailable
from encryption import email_cipher
from mailer import Mailer, get_mailer
from token_store import TokenStore
from access_tokens import issue_tokens, validate_token, resend_token

load_dotenv()

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper(),
                    format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

MAX_ISSUE_BATCH = int(os.getenv("MAX_ISSUE_BATCH", "500"))

app = FastAPI(title="Course Feedback API")

origins = os.getenv("ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Base.metadata.create_all(bind=engine)

@app.exception_handler(StoreUnavailable)
def _store_unavailable(request, exc: StoreUnavailable):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

def get_token_store(db: Session = Depends(get_db)) -> TokenStore:
    """Per-request Token Store bound to the request's DB session."""
    return TokenStore(db)

def _form_or_404(db: Session, form_id: int) -> Form:
    form = db.get(Form, form_id)
    if not form:
        raise HTTPException(404, "Form not found")
    return form

def _form_out(form: Form) -> dict:
    return {
        "id": form.id,
        "title": form.title,
        "description": form.description,
        "type": form.type,
        "created_at": form.created_at,
        "questions": [{
            "id": q.id,
            "order_index": q.order_index,
            "text": q.text,
            "type": q.type,
            "options": q.options if q.type == "mcq" else None,
        } for q in form.questions],
    }

def _response_out(r: Response) -> dict:
    return {
        "id": r.id,
        "form_id": r.form_id,
        "submitted_at": r.submitted_at,
        "answers": {str(a.question_id): a.answer_text for a in r.answers},
    }

@app.get("/health")
def health():
    """Basic readiness probe.

    Returns:
        dict: {"ok": True}
    """
    return {"ok": True}

# ------------------------
# Admin: forms
# ------------------------
@app.post("/admin/forms", dependencies=[Depends(verify_admin)], status_code=201)
def create_form(payload: FormCreate, db: Session = Depends(get_db)):
    """Create a form with its questions.

    Args:
        payload (FormCreate): title, description, type, questions[].
        db (Session): DB session.

    Returns:
        dict: The created form.

    Raises:
        HTTPException: 400 if title/description is blank or no question has text.
    """
    title = (payload.title or "").strip()
    description = (payload.description or "").strip()
    questions = [q for q in payload.questions if (q.text or "").strip()]
    if not title or not description or not questions:
        raise HTTPException(400, "Title, description, and at least one question are required")

    form = Form(title=title, description=description, type=payload.type)
    db.add(form)
    db.flush()
    for q in sorted(questions, key=lambda x: x.order_index):
        db.add(Question(form_id=form.id, text=q.text.strip(), order_index=q.order_index,
                        type=q.type, options=q.options))
    db.commit()
    db.refresh(form)
    logger.info("Created %s form %s", form.type, form.id)
    return _form_out(form)

@app.get("/admin/forms", dependencies=[Depends(verify_admin)])
def list_forms(type: str | None = None, db: Session = Depends(get_db)):
    """List forms newest first, optionally only public or private ones."""
    q = select(Form).order_by(Form.created_at.desc(), Form.id.desc())
    if type:
        q = q.where(Form.type == type)
    rows = db.execute(q).scalars().all()
    out = []
    for f in rows:
        item = _form_out(f)
        item["response_count"] = len(f.responses)
        out.append(item)
    return out

@app.get("/admin/forms/{form_id}", dependencies=[Depends(verify_admin)], response_model=FormOut)
def get_form(form_id: int, db: Session = Depends(get_db)):
    return _form_out(_form_or_404(db, form_id))

@app.delete("/admin/forms/{form_id}", dependencies=[Depends(verify_admin)])
def delete_form(form_id: int, db: Session = Depends(get_db)):
    """Hard-delete a form with its questions, responses and tokens (via FKs).

    Raises:
        HTTPException: 404 if form not found.
    """
    form = _form_or_404(db, form_id)
    db.delete(form)
    db.commit()
    return {"ok": True}

# ------------------------
# Admin: access tokens
# ------------------------
@app.post("/admin/tokens", dependencies=[Depends(verify_admin)])
def generate_tokens(payload: IssueTokens, db: Session = Depends(get_db),
                    store: TokenStore = Depends(get_token_store),
                    mailer: Mailer = Depends(get_mailer)):
    """Issue one single-use access token per email and send it out.

    The call succeeds as long as the batch ran; per-email failures are listed
    in ``errors``.

    Args:
        payload (IssueTokens): {form_id, emails[], form_title?}
        db (Session): DB session.
        store (TokenStore): Token persistence.
        mailer (Mailer): Mail transport.

    Returns:
        dict: {success, total, successful, failed, results[], errors?[]}

    Raises:
        HTTPException: 400 on malformed input or oversized batch; 404 if form not found.
    """
    if len(payload.emails) > MAX_ISSUE_BATCH:
        raise HTTPException(400, f"At most {MAX_ISSUE_BATCH} emails per request")
    form = _form_or_404(db, payload.form_id)
    title = (payload.form_title or "").strip() or form.title
    try:
        report = issue_tokens(store, mailer, form.id, title, payload.emails)
    except AccessTokenError as e:
        raise HTTPException(e.status_code, e.message)
    return report.as_dict()

@app.get("/admin/forms/{form_id}/tokens", dependencies=[Depends(verify_admin)], response_model=list[AccessTokenOut])
def list_tokens(form_id: int, db: Session = Depends(get_db),
                store: TokenStore = Depends(get_token_store)):
    """List issued tokens for a form, with recipient emails decrypted."""
    _form_or_404(db, form_id)
    return [{
        "email": email_cipher.decrypt(t.email),
        "token": t.token,
        "used": t.used,
        "used_at": t.used_at,
        "created_at": t.created_at,
    } for t in store.list_for_form(form_id)]

@app.post("/admin/tokens/{token}/resend", dependencies=[Depends(verify_admin)])
def resend(token: str, store: TokenStore = Depends(get_token_store),
           mailer: Mailer = Depends(get_mailer)):
    """Send an unused token's email again.

    Raises:
        HTTPException: 404 unknown token; 403 already used; 502 send failed.
    """
    try:
        record = resend_token(store, mailer, token)
    except AccessTokenError as e:
        raise HTTPException(e.status_code, e.message)
    return {"ok": True, "form_id": record.form_id}

# ------------------------
# Admin: responses & dashboard
# ------------------------
@app.get("/admin/responses", dependencies=[Depends(verify_admin)])
def list_responses(form_id: int | None = None, db: Session = Depends(get_db)):
    """List responses newest first, optionally for one form."""
    q = select(Response).order_by(Response.submitted_at.desc(), Response.id.desc())
    if form_id is not None:
        q = q.where(Response.form_id == form_id)
    return [_response_out(r) for r in db.execute(q).scalars().all()]

@app.get("/admin/stats", dependencies=[Depends(verify_admin)])
def stats(db: Session = Depends(get_db)):
    """Overall counts for the dashboard header."""
    forms = db.execute(select(func.count()).select_from(Form)).scalar_one()
    responses = db.execute(select(func.count()).select_from(Response)).scalar_one()
    return {"forms": forms, "responses": responses}

@app.get("/admin/forms/{form_id}/summary", dependencies=[Depends(verify_admin)])
def form_summary(form_id: int, db: Session = Depends(get_db)):
    """Aggregate a form's responses per question.

    MCQ questions get a count per option (zero-filled); text questions get
    the list of non-empty answers.

    Returns:
        dict: {"form_id", "total_responses", "questions": [...]}
    """
    form = _form_or_404(db, form_id)
    rows = db.execute(
        select(Answer.question_id, Answer.answer_text)
        .join(Response, Response.id == Answer.response_id)
        .where(Response.form_id == form_id)
    ).all()
    df = pd.DataFrame([tuple(r) for r in rows], columns=["question_id", "answer_text"])
    total = db.execute(
        select(func.count()).select_from(Response).where(Response.form_id == form_id)
    ).scalar_one()

    out_qs = []
    for q in form.questions:
        answers = df.loc[df["question_id"] == q.id, "answer_text"].dropna()
        item = {"id": q.id, "text": q.text, "type": q.type}
        if q.type == "mcq":
            counts = answers.value_counts()
            item["counts"] = {opt: int(counts.get(opt, 0)) for opt in (q.options or [])}
        else:
            item["answers"] = [a for a in answers.tolist() if a.strip()]
        out_qs.append(item)
    return {"form_id": form.id, "total_responses": total, "questions": out_qs}

@app.get("/admin/forms/{form_id}/export.csv", dependencies=[Depends(verify_admin)])
def export_csv(form_id: int, db: Session = Depends(get_db)):
    """Export a form's responses as CSV (sorted by response, then question order).

    Returns:
        Response: text/csv attachment `form_<id>_responses.csv`.
    """
    _form_or_404(db, form_id)
    q = select(Response.id.label("response_id"), Response.submitted_at, Question.order_index,
               Question.text.label("question"), Question.type.label("question_type"),
               Answer.answer_text).join(Answer, Answer.response_id == Response.id).join(
               Question, Question.id == Answer.question_id).where(
               Response.form_id == form_id).order_by(Response.id, Question.order_index)
    df = pd.read_sql(q, db.bind)
    csv_bytes = df.to_csv(index=False).encode("utf-8")
    return HTTPResponse(content=csv_bytes, media_type="text/csv",
                        headers={"Content-Disposition": f"attachment; filename=form_{form_id}_responses.csv"})

# ------------------------
# Public: forms, token redemption, responses
# ------------------------
@app.get("/public/forms/{form_id}", response_model=FormOut)
def load_public_form(form_id: int, db: Session = Depends(get_db)):
    """Return a form for respondents (private forms still need a token to submit)."""
    return _form_out(_form_or_404(db, form_id))

@app.post("/public/validate-token")
def redeem_token(payload: ValidateToken, store: TokenStore = Depends(get_token_store)):
    """Redeem a single-use access token for a private form.

    Args:
        payload (ValidateToken): {form_id, token}

    Returns:
        dict: {"success": True, "message": "Access granted"}

    Raises:
        HTTPException: 400 missing fields; 404 invalid token; 403 already used.
    """
    try:
        validate_token(store, payload.form_id, payload.token.strip())
    except AccessTokenError as e:
        raise HTTPException(e.status_code, e.message)
    return {"success": True, "message": "Access granted"}

@app.post("/public/responses", status_code=201)
def submit_response(payload: ResponseCreate, db: Session = Depends(get_db)):
    """Store an anonymous response to a form.

    Args:
        payload (ResponseCreate): {form_id, answers{question_id: answer}}

    Returns:
        dict: The stored response.

    Raises:
        HTTPException: 404 if form not found; 400 if answers are empty, reference
        questions outside the form, or pick an option an MCQ question does not have.
    """
    form = _form_or_404(db, payload.form_id)
    answers = {qid: (text or "").strip() for qid, text in payload.answers.items()}
    answers = {qid: text for qid, text in answers.items() if text}
    if not answers:
        raise HTTPException(400, "answers are required")

    questions = {q.id: q for q in form.questions}
    for qid, text in answers.items():
        q = questions.get(qid)
        if q is None:
            raise HTTPException(400, f"Question {qid} does not belong to this form")
        if q.type == "mcq" and text not in (q.options or []):
            raise HTTPException(400, f"Invalid option for question {qid}")

    row = Response(form_id=form.id)
    db.add(row)
    db.flush()
    for qid, text in answers.items():
        db.add(Answer(response_id=row.id, question_id=qid, answer_text=text))
    db.commit()
    db.refresh(row)
    return _response_out(row)
