# Doc-Pipeline/app.py
import uuid
import logging
from pathlib import Path

from flask import Flask, request, jsonify, send_from_directory
from werkzeug.exceptions import HTTPException, NotFound
from werkzeug.utils import secure_filename

from artifacts import remove_path
from config import Settings
from pipeline import Orchestrator, UploadedFile

logger = logging.getLogger(__name__)


# --- Helper Functions ---

def save_upload(file_storage, upload_dir):
    """Saves one uploaded file under a random name that keeps the original extension."""
    original_name = file_storage.filename or ""
    extension = Path(secure_filename(original_name)).suffix.lower()
    path = Path(upload_dir) / f"{uuid.uuid4().hex}{extension}"
    file_storage.save(str(path))
    logger.info(f"Saved upload '{original_name}' as {path.name} ({path.stat().st_size / (1024 * 1024):.2f} MB)")
    return UploadedFile(path, original_name)


def collect_uploads(field_name, upload_dir):
    """Saves every non-empty file of ``field_name``. On failure, already-saved files are removed."""
    saved = []
    try:
        for file_storage in request.files.getlist(field_name):
            if file_storage and file_storage.filename:
                saved.append(save_upload(file_storage, upload_dir))
    except BaseException:
        for upload in saved:
            try:
                remove_path(upload.path)
            except OSError as e:
                logger.warning(f"Could not remove upload {upload.path}: {e}")
        raise
    return saved


def error_response(error, message, status):
    return jsonify({"success": False, "error": error, "message": message}), status


def result_response(result, error, operation_name):
    """Serializes an orchestrator ``(result, error)`` pair into the JSON envelope."""
    if error is not None:
        logger.info(f"{operation_name} rejected with {error.kind} ({error.status}): {error.message}")
        return jsonify(error.to_dict()), error.status

    body = {"success": True, "message": result.message}
    if result.empty:
        body.update(downloadUrl=None, fileName=None)
    else:
        body.update(downloadUrl=f"/downloads/{result.file_name}", fileName=result.file_name,
                    fileSize=result.size)
    body.update(result.metadata)
    return jsonify(body)


# --- Application factory ---

def create_app(settings=None, orchestrator=None):
    settings = settings or Settings.from_env()
    logging.basicConfig(level=settings.log_level, format='%(asctime)s - %(levelname)s - %(name)s - %(message)s')
    settings.ensure_directories()
    orchestrator = orchestrator or Orchestrator(settings)

    app = Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = settings.max_content_length
    app.config['UPLOAD_FOLDER'] = settings.upload_dir
    app.config['OUTPUT_FOLDER'] = settings.output_dir
    app.extensions['orchestrator'] = orchestrator

    def single(field_name='file'):
        uploads = collect_uploads(field_name, settings.upload_dir)
        return uploads if len(uploads) != 1 else uploads[0]

    # --- Routes ---

    @app.route('/health')
    def health():
        return jsonify({"status": "ok", "service": "doc-pipeline"})

    @app.route('/convert', methods=['POST'])
    def convert_route():
        result, error = orchestrator.convert(single(), request.form)
        return result_response(result, error, "Convert")

    @app.route('/convert/images', methods=['POST'])
    def convert_images_route():
        uploads = collect_uploads('files', settings.upload_dir)
        result, error = orchestrator.convert_images(uploads, request.form)
        return result_response(result, error, "Images to PDF")

    @app.route('/merge', methods=['POST'])
    def merge_route():
        uploads = collect_uploads('files', settings.upload_dir)
        result, error = orchestrator.merge(uploads, request.form)
        return result_response(result, error, "Merge")

    @app.route('/split', methods=['POST'])
    def split_route():
        result, error = orchestrator.split(single(), request.form)
        return result_response(result, error, "Split")

    @app.route('/compress', methods=['POST'])
    def compress_route():
        result, error = orchestrator.compress(single(), request.form)
        return result_response(result, error, "Compress")

    @app.route('/watermark', methods=['POST'])
    def watermark_route():
        result, error = orchestrator.watermark(single(), request.form)
        return result_response(result, error, "Watermark")

    @app.route('/ocr', methods=['POST'])
    def ocr_route():
        result, error = orchestrator.ocr(single(), request.form)
        return result_response(result, error, "OCR")

    @app.route('/pdf/protect', methods=['POST'])
    def protect_route():
        result, error = orchestrator.protect(single(), request.form)
        return result_response(result, error, "Protect")

    @app.route('/pdf/unlock', methods=['POST'])
    def unlock_route():
        result, error = orchestrator.unlock(single(), request.form)
        return result_response(result, error, "Unlock")

    @app.route('/pdf/reorder', methods=['POST'])
    def reorder_route():
        result, error = orchestrator.reorder(single(), request.form)
        return result_response(result, error, "Reorder")

    @app.route('/pdf/extract-images', methods=['POST'])
    def extract_images_route():
        result, error = orchestrator.extract_images(single(), request.form)
        return result_response(result, error, "Extract images")

    @app.route('/pdf/to-office', methods=['POST'])
    def to_office_route():
        result, error = orchestrator.to_office(single(), request.form)
        return result_response(result, error, "PDF to Office")

    # --- Download Handling ---

    @app.route('/downloads/<path:filename>')
    def download_file(filename):
        """Serves a committed artifact from the output directory."""
        output_dir = Path(settings.output_dir).resolve()
        safe_filename = secure_filename(filename)
        if not safe_filename or safe_filename != filename:
            logger.warning(f"Download attempt with potentially unsafe filename blocked: '{filename}'")
            return error_response("ValidationError", "Invalid filename.", 400)

        file_path = output_dir / safe_filename
        if not file_path.is_file():
            logger.info(f"Download requested for missing file: {safe_filename}")
            return error_response("NotFound", "File not found or has expired.", 404)

        logger.info(f"Download request for: {safe_filename}")
        return send_from_directory(output_dir, safe_filename, as_attachment=True)

    # --- Error handlers ---

    @app.errorhandler(NotFound)
    def not_found(e):
        return error_response("NotFound", f"Route {request.method} {request.path} not found.", 404)

    @app.errorhandler(413)
    def too_large(e):
        return error_response("ValidationError",
                              f"File too large. Maximum size is {settings.max_file_size_mb}MB.", 413)

    @app.errorhandler(HTTPException)
    def http_error(e):
        return error_response(e.name.replace(" ", ""), e.description or e.name, e.code)

    @app.errorhandler(Exception)
    def unexpected_error(e):
        logger.error(f"Unhandled error on {request.method} {request.path}: {e}", exc_info=True)
        return error_response("InternalError", "An unexpected server error occurred.", 500)

    return app


# --- Run the App ---
if __name__ == '__main__':
    settings = Settings.from_env()
    app = create_app(settings)
    logger.info(f"Starting document service on port {settings.port}")
    app.run(host='0.0.0.0', port=settings.port, debug=False, threaded=True)
