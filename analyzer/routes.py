from flask import Blueprint, current_app, render_template, jsonify
from datetime import datetime

routes_bp = Blueprint("routes", __name__, template_folder="../templates", url_prefix="")


@routes_bp.route('/', endpoint='index')
def index():
    extensions = sorted(current_app.config['ALLOWED_EXTENSIONS'])
    accept = ",".join(["image/*", "application/pdf", "text/csv", "application/vnd.ms-excel", "text/plain"]
                      + [f".{ext}" for ext in extensions])
    return render_template(
        'index.html',
        accept=accept,
        extensions=", ".join(ext.upper() for ext in extensions),
        default_llm=current_app.config['DEFAULT_LLM'],
    )


@routes_bp.route('/api/health', endpoint='api_health')
def api_health():
    return jsonify({
        'status': 'ok',
        'time': datetime.utcnow().isoformat() + 'Z'
    }), 200
