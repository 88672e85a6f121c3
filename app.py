import io
import logging
import os

from flask import Flask, jsonify, request, send_file, session

from config import Config
from analyzer.errors import AnalyzerError, NoFilesSelected
from analyzer.routes import routes_bp
from analyzer.services import (
    AnalysisJob,
    JobRegistry,
    build_clients,
    build_issuer,
    retry_analysis,
    save_uploads,
    start_job,
)
from invoice_rendering import build_invoice_archive
from reservation_tables import reservations_to_csv

app = Flask(
    __name__,
    static_folder='public',
    static_url_path='/public',
    template_folder='templates'
)
app.config.from_object(Config)
app.secret_key = Config.SECRET_KEY

app.register_blueprint(routes_bp, url_prefix="")

# --- Logging Configuration ---
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)

jobs = JobRegistry(max_jobs=app.config['MAX_JOBS'], ttl_seconds=app.config['JOB_TTL_SECONDS'])


def _error(message: str, status: int):
    return jsonify({'success': False, 'errors': [message]}), status


def _find_job(job_id: str):
    job = jobs.get(job_id)
    if job is None:
        app.logger.warning(f"Unknown job requested: {job_id}")
    return job


@app.route('/api/analyze', methods=['POST'])
def analyze():
    app.logger.info("Received analyze request")
    files = [f for f in request.files.getlist('files') if f and f.filename]
    llm_choice = request.form.get('llm_choice', app.config['DEFAULT_LLM'])
    app.logger.info(f"Number of files uploaded: {len(files)}, LLM choice: {llm_choice}")
    if not files:
        return _error(NoFilesSelected().user_message, 400)

    try:
        extraction_client, analysis_client = build_clients(app.config, llm_choice)
    except AnalyzerError as e:
        app.logger.error(f"Client configuration failed: {e.user_message}")
        return _error(e.user_message, 500)

    uploaded, rejected = save_uploads(files, app.config['UPLOAD_FOLDER'])
    if not uploaded:
        return _error(f"Nepodržani format datoteke: {', '.join(rejected)}. "
                      "Molimo odaberite sliku, PDF, CSV, XLS ili TXT.", 400)

    job = jobs.add(AnalysisJob(uploaded, llm_choice, rejected), replaces=session.get('job_id'))
    session['job_id'] = job.id
    start_job(job, extraction_client, analysis_client, inline=app.config['RUN_JOBS_INLINE'])
    return jsonify(job.to_payload()), 202


@app.route('/api/jobs/<job_id>')
def job_status(job_id):
    job = _find_job(job_id)
    if job is None:
        return _error("Analiza nije pronađena.", 404)
    return jsonify(job.to_payload())


@app.route('/api/jobs/<job_id>/analysis', methods=['POST'])
def retry_job_analysis(job_id):
    job = _find_job(job_id)
    if job is None:
        return _error("Analiza nije pronađena.", 404)
    if not job.can_retry_analysis:
        return _error("Nema podataka o rezervacijama za ponovnu analizu.", 409)
    try:
        _, analysis_client = build_clients(app.config, job.llm_choice)
    except AnalyzerError as e:
        return _error(e.user_message, 500)
    if not job.begin_retry():
        return _error("Analiza je već u tijeku.", 409)
    retry_analysis(job, analysis_client, inline=app.config['RUN_JOBS_INLINE'])
    return jsonify(job.to_payload()), 202


@app.route('/api/jobs/<job_id>/invoices.zip')
def download_invoices(job_id):
    job = _find_job(job_id)
    if job is None:
        return _error("Analiza nije pronađena.", 404)
    try:
        archive = build_invoice_archive(job.reservations, build_issuer(app.config))
    except AnalyzerError as e:
        app.logger.error(f"Invoice archive failed for job {job_id}: {e.user_message}")
        return _error(e.user_message, 500)
    return send_file(
        io.BytesIO(archive),
        as_attachment=True,
        download_name=app.config['ARCHIVE_FILENAME'],
        mimetype='application/zip'
    )


@app.route('/api/jobs/<job_id>/reservations.csv')
def download_reservations(job_id):
    job = _find_job(job_id)
    if job is None:
        return _error("Analiza nije pronađena.", 404)
    if not job.reservations:
        return _error("Nema podataka o rezervacijama.", 409)
    return send_file(
        io.BytesIO(reservations_to_csv(job.reservations).encode('utf-8-sig')),
        as_attachment=True,
        download_name='rezervacije.csv',
        mimetype='text/csv'
    )


if __name__ == '__main__':
    app.run(debug=True)
