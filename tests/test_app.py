"""Tests for the Flask API, with jobs run inline and fake AI clients."""

import io
import zipfile

import pytest

import app as app_module
from conftest import FakeAnalysisClient, FakeExtractionClient


@pytest.fixture
def fakes(reservation_factory, network_error):
    extraction = FakeExtractionClient({
        "A": [reservation_factory("A1", guest="Ana Marić", check_in="05.10.2025", check_out="08.10.2025"),
              reservation_factory("A2", guest="Ivo Ivić")],
        "B": [],
        "C": network_error,
    })
    return extraction, FakeAnalysisClient()


@pytest.fixture
def client(tmp_path, monkeypatch, fakes):
    flask_app = app_module.app
    flask_app.config.update(TESTING=True, RUN_JOBS_INLINE=True, UPLOAD_FOLDER=str(tmp_path / "uploads"))
    monkeypatch.setattr(app_module, "build_clients", lambda config, llm_choice: fakes)
    monkeypatch.setattr(app_module, "jobs", app_module.JobRegistry())
    with flask_app.test_client() as test_client:
        yield test_client


def _upload(client, *files):
    data = {"files": [(io.BytesIO(content.encode()), name, mime) for name, content, mime in files]}
    return client.post("/api/analyze", data=data, content_type="multipart/form-data")


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.get_json()["status"] == "ok"


def test_index_page(client):
    r = client.get("/")
    assert r.status_code == 200
    assert "Analiziraj" in r.get_data(as_text=True)


def test_index_page_escapes_names_and_report(client):
    page = client.get("/").get_data(as_text=True)
    assert "li.textContent = f.name" in page
    assert "DOMPurify.sanitize(marked.parse(job.report))" in page
    assert "'<li>' + f.name" not in page


def test_index_page_recovers_from_network_errors(client):
    """poll, retry and download all reset the busy state when fetch throws."""
    page = client.get("/").get_data(as_text=True)
    assert page.count("} catch (err) {\n    fail();") == 4


def test_analyze_without_files(client, fakes):
    r = client.post("/api/analyze", data={}, content_type="multipart/form-data")
    assert r.status_code == 400
    assert r.get_json()["errors"] == ["Niste odabrali nijednu datoteku."]
    assert fakes[0].calls == []


def test_only_unsupported_files(client, fakes):
    r = _upload(client, ("archive.zip", "A", "application/zip"))
    assert r.status_code == 400
    assert "archive.zip" in r.get_json()["errors"][0]
    assert fakes[0].calls == []


def test_partial_success_end_to_end(client, fakes):
    r = _upload(
        client,
        ("A.pdf", "A", "application/pdf"),
        ("B.png", "B", "image/png"),
        ("C.csv", "C", "application/octet-stream"),
        ("D.zip", "D", "application/zip"),
    )
    assert r.status_code == 202
    job = client.get(f"/api/jobs/{r.get_json()['job_id']}").get_json()

    assert job["status"] == "done"
    assert [res["bookingNumber"] for res in job["reservations"]] == ["A1", "A2"]
    assert job["failed_files"] == ["B.png", "C.csv"]
    assert job["rejected_files"] == ["D.zip"]
    assert "B.png" in job["warning"] and "C.csv" in job["warning"]
    assert job["progress"]["processed"] == 3 and job["progress"]["total"] == 3
    assert job["report"].startswith("# Izvještaj")
    assert job["summary"]["total_nights"] == 7
    assert job["errors"] == []
    # the analysis saw only A's records
    assert [r.booking_number for r in fakes[1].received[0]] == ["A1", "A2"]


def test_all_files_failed(client):
    r = _upload(client, ("B.pdf", "B", "application/pdf"), ("C.pdf", "C", "application/pdf"))
    job = client.get(f"/api/jobs/{r.get_json()['job_id']}").get_json()

    assert job["status"] == "failed"
    assert job["success"] is False
    assert "B.pdf" in job["errors"][0] and "C.pdf" in job["errors"][0]
    assert job["reservations"] == []


def test_analysis_failure_keeps_records_and_warning(client, fakes):
    fakes[1].fail = True
    r = _upload(client, ("A.pdf", "A", "application/pdf"), ("B.pdf", "B", "application/pdf"))
    job_id = r.get_json()["job_id"]
    job = client.get(f"/api/jobs/{job_id}").get_json()

    assert job["status"] == "analysis_failed"
    assert len(job["reservations"]) == 2
    assert "B.pdf" in job["warning"]
    assert "analize" in job["errors"][0]

    # invoices still available
    assert client.get(f"/api/jobs/{job_id}/invoices.zip").status_code == 200

    fakes[1].fail = False
    retried = client.post(f"/api/jobs/{job_id}/analysis")
    assert retried.status_code == 202
    job = client.get(f"/api/jobs/{job_id}").get_json()
    assert job["status"] == "done"
    assert job["report"]
    assert job["errors"] == []
    assert "B.pdf" in job["warning"]


def test_retry_requires_records(client):
    r = _upload(client, ("B.pdf", "B", "application/pdf"))
    job_id = r.get_json()["job_id"]
    assert client.post(f"/api/jobs/{job_id}/analysis").status_code == 409


def test_invoice_archive_download(client):
    r = _upload(client, ("A.pdf", "A", "application/pdf"))
    resp = client.get(f"/api/jobs/{r.get_json()['job_id']}/invoices.zip")

    assert resp.status_code == 200
    assert resp.mimetype == "application/zip"
    assert "Racuni_BlueTreeRooms_Listopad2025.zip" in resp.headers["Content-Disposition"]
    with zipfile.ZipFile(io.BytesIO(resp.data)) as zf:
        names = zf.namelist()
    assert len(names) == 2
    assert any("05102025" in n and "AnaMarić" in n for n in names)


def test_reservations_csv_download(client):
    r = _upload(client, ("A.pdf", "A", "application/pdf"))
    resp = client.get(f"/api/jobs/{r.get_json()['job_id']}/reservations.csv")

    assert resp.status_code == 200
    text = resp.data.decode("utf-8-sig")
    assert text.splitlines()[0].startswith("bookingNumber,")
    assert "A1" in text and "A2" in text


def test_new_batch_discards_previous_job(client):
    first = _upload(client, ("A.pdf", "A", "application/pdf")).get_json()["job_id"]
    second = _upload(client, ("A.pdf", "A", "application/pdf")).get_json()["job_id"]

    assert client.get(f"/api/jobs/{first}").status_code == 404
    assert client.get(f"/api/jobs/{second}").status_code == 200
    assert len(app_module.jobs) == 1


def test_uploads_are_removed_after_batch(client, tmp_path):
    _upload(client, ("A.pdf", "A", "application/pdf"))
    assert list((tmp_path / "uploads").iterdir()) == []


def test_unknown_job(client):
    r = client.get("/api/jobs/does-not-exist")
    assert r.status_code == 404
    assert r.get_json()["errors"] == ["Analiza nije pronađena."]


def test_sessionless_clients_cannot_grow_the_registry(client, monkeypatch):
    """Each post from a fresh client has no session to replace; the cap still holds."""
    registry = app_module.JobRegistry(max_jobs=5)
    monkeypatch.setattr(app_module, "jobs", registry)
    job_ids = []
    for _ in range(20):
        with app_module.app.test_client() as fresh:
            job_ids.append(_upload(fresh, ("A.pdf", "A", "application/pdf")).get_json()["job_id"])

    assert len(registry) == 5
    assert client.get(f"/api/jobs/{job_ids[0]}").status_code == 404
    assert client.get(f"/api/jobs/{job_ids[-1]}").status_code == 200


def test_retry_while_analysis_runs_is_refused(client):
    r = _upload(client, ("A.pdf", "A", "application/pdf"))
    job = app_module.jobs.get(r.get_json()["job_id"])
    assert job.begin_retry() is True

    resp = client.post(f"/api/jobs/{job.id}/analysis")
    assert resp.status_code == 409
    assert job.status == "analyzing"
