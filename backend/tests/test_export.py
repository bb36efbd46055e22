import io, csv
HDR = {"X-API-Key": "test-key"}

def test_export_csv_after_submit(client, make_form):
    f = make_form(title="Export Form", type="public")
    q_mcq, q_text = f["questions"][0]["id"], f["questions"][1]["id"]

    s = client.post("/public/responses", json={
        "form_id": f["id"], "answers": {str(q_mcq): "Too Easy", str(q_text): "good pace"},
    })
    assert s.status_code == 201

    # export CSV
    r = client.get(f"/admin/forms/{f['id']}/export.csv", headers=HDR)
    assert r.status_code == 200
    assert "text/csv" in r.headers.get("content-type", "")
    assert f"form_{f['id']}_responses.csv" in r.headers.get("content-disposition", "")

    reader = csv.reader(io.StringIO(r.content.decode("utf-8")))
    header = next(reader)
    for col in ["response_id", "submitted_at", "order_index", "question", "question_type", "answer_text"]:
        assert col in header
    rows = list(reader)
    assert len(rows) == 2
    answers = [row[header.index("answer_text")] for row in rows]
    assert answers == ["Too Easy", "good pace"]

def test_export_unknown_form(client):
    assert client.get("/admin/forms/999999/export.csv", headers=HDR).status_code == 404
