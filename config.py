import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    MISTRAL_API_KEY = os.environ.get('MISTRAL_API_KEY')
    OPENROUTER_API_KEY = os.environ.get('OPENROUTER_API_KEY')
    UPLOAD_FOLDER = os.environ.get('UPLOAD_FOLDER') or 'uploads'
    MAX_CONTENT_LENGTH = 32 * 1024 * 1024  # 32MB per request, all files together
    ALLOWED_EXTENSIONS = {'pdf', 'png', 'jpg', 'jpeg', 'webp', 'csv', 'xls', 'txt'}

    # LLM Settings
    DEFAULT_LLM = "Mistral"
    EXTRACTION_MODEL = os.environ.get('EXTRACTION_MODEL') or "mistral-small-latest"
    ANALYSIS_MODEL = os.environ.get('ANALYSIS_MODEL') or "mistral-large-latest"
    OPENROUTER_EXTRACTION_MODEL = os.environ.get('OPENROUTER_EXTRACTION_MODEL') or "google/gemini-2.5-flash"
    OPENROUTER_ANALYSIS_MODEL = os.environ.get('OPENROUTER_ANALYSIS_MODEL') or "google/gemini-2.5-pro"

    # Report and invoice settings
    REPORT_PERIOD = os.environ.get('REPORT_PERIOD') or "listopad 2025"
    ISSUER_NAME = os.environ.get('ISSUER_NAME') or "Blue Tree Rooms, Sandra Orlić"
    ISSUER_ADDRESS = os.environ.get('ISSUER_ADDRESS') or "Požeška 18, 21000 Split"
    INVOICE_FILE_PREFIX = os.environ.get('INVOICE_FILE_PREFIX') or "BlueTreeRooms"
    ARCHIVE_FILENAME = os.environ.get('ARCHIVE_FILENAME') or "Racuni_BlueTreeRooms_Listopad2025.zip"
    INVOICE_FONT_PATH = os.environ.get('INVOICE_FONT_PATH')  # TTF with č/ć/đ glyphs, Helvetica if unset

    # Run analysis jobs in the request thread instead of a background thread
    RUN_JOBS_INLINE = os.environ.get('RUN_JOBS_INLINE', '').lower() in ('1', 'true', 'yes')

    # Finished jobs are kept in memory for downloads; oldest are dropped first
    MAX_JOBS = int(os.environ.get('MAX_JOBS') or 100)
    JOB_TTL_SECONDS = int(os.environ.get('JOB_TTL_SECONDS') or 3600)
