"""
视频转换 API 端点

HTTP 层只负责把请求转换为任务和状态，实际转换由 VideoConverter 完成。
"""

import os
import json
import queue
import uuid
import logging
from datetime import datetime
from flask import jsonify, request, send_from_directory, Response, stream_with_context
from werkzeug.utils import secure_filename

from .task import ConversionJob, ConversionStatus
from .abort import AbortResult
from .ffmpeg import supported_formats
from .quality import available_quality_settings, resolve_quality_setting, is_valid_quality_name

logger = logging.getLogger(__name__)

# 全局转换管理器实例（在 webserver.py 中初始化）
CONVERTER = None

# SSE 心跳间隔（秒）
SSE_HEARTBEAT_INTERVAL = 30

_ABORT_RESPONSES = {
    AbortResult.OK: ("Conversion abort requested successfully", 200),
    AbortResult.NOT_FOUND: ("Conversion not found or no active process (may have already finished)", 404),
    AbortResult.ALREADY_COMPLETE: ("Conversion already complete or aborted", 409),
    AbortResult.SIGNAL_ERROR: ("Failed to stop FFmpeg process", 500),
}


def init_converter(converter):
    """初始化转换管理器

    Args:
        converter: VideoConverter 实例
    """
    global CONVERTER
    CONVERTER = converter
    logger.info("Video converter initialized")


def _parse_bool(value) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


def register_routes(app):
    """注册转换 API 路由

    Args:
        app: Flask 应用实例
    """

    @app.route('/api/formats', methods=['GET'])
    def available_formats():
        return jsonify(supported_formats())

    @app.route('/api/qualities', methods=['GET'])
    def available_qualities():
        return jsonify([q.to_dict() for q in available_quality_settings()])

    @app.route('/api/upload-convert', methods=['POST'])
    def upload_convert():
        """上传文件并提交转换任务

        表单字段：
            video: 视频文件
            targetFormat: 目标格式（mov / mp4 / avi）
            quality: 质量（default / high / fast）
            reverseVideo / removeSound: 布尔值

        Returns:
            conversionId JSON；队列已满返回 503
        """
        if CONVERTER is None:
            return jsonify({"error": "Video converter not initialized"}), 500

        upload = request.files.get('video')
        if upload is None or not upload.filename:
            return jsonify({"error": "Missing 'video' file"}), 400

        target_format = (request.form.get('targetFormat') or "").strip().lower()
        if target_format not in supported_formats():
            return jsonify({"error": f"Unsupported target format '{target_format}'"}), 400

        quality_name = request.form.get('quality') or "default"
        if not is_valid_quality_name(quality_name):
            return jsonify({"error": f"Invalid quality '{quality_name}'"}), 400
        quality = resolve_quality_setting(quality_name)

        config = CONVERTER.config
        conversion_id = uuid.uuid4().hex
        safe_name = secure_filename(upload.filename) or "video"
        base_name = os.path.splitext(safe_name)[0]

        input_path = config.get_upload_path(f"{conversion_id}_{safe_name}")
        output_path = config.get_output_path(f"{base_name}_{conversion_id[:8]}", target_format)

        try:
            os.makedirs(os.path.dirname(input_path), exist_ok=True)
            upload.save(input_path)
        except OSError as e:
            logger.error(f"Failed to save upload for job {conversion_id}: {e}")
            return jsonify({"error": "Failed to save uploaded file"}), 500

        job = ConversionJob(
            conversion_id=conversion_id,
            input_path=input_path,
            output_path=output_path,
            target_format=target_format,
            quality=quality.name,
            reverse_video=_parse_bool(request.form.get('reverseVideo')),
            remove_sound=_parse_bool(request.form.get('removeSound')),
            file_name=upload.filename,
        )
        CONVERTER.store.put(conversion_id, ConversionStatus(
            input_path=input_path,
            output_path=output_path,
            format=target_format,
            quality=quality.name,
        ))

        success, message = CONVERTER.submit(job)
        if not success:
            CONVERTER.store.delete(conversion_id)
            try:
                os.remove(input_path)
            except OSError as e:
                logger.warning(f"Failed to remove rejected upload {input_path}: {e}")
            return jsonify({"error": "Server is busy, please try again later", "detail": message}), 503

        return jsonify({
            "success": True,
            "message": "Conversion started",
            "conversionId": conversion_id,
        })

    @app.route('/api/status/<conversion_id>', methods=['GET'])
    def conversion_status(conversion_id):
        if CONVERTER is None:
            return jsonify({"error": "Video converter not initialized"}), 500

        status = CONVERTER.store.get(conversion_id)
        if status is None:
            return jsonify({"error": "Conversion not found or expired"}), 404
        return jsonify(status.to_dict(conversion_id))

    @app.route('/api/conversions/active', methods=['GET'])
    def active_conversions():
        if CONVERTER is None:
            return jsonify({"error": "Video converter not initialized"}), 500
        return jsonify(CONVERTER.store.list_active())

    @app.route('/api/conversions/<conversion_id>/abort', methods=['POST'])
    def abort_conversion(conversion_id):
        """中止转换任务

        返回 200 只表示终止信号已发送，任务状态会在进程退出后变为 aborted。

        Args:
            conversion_id: 转换 ID

        Returns:
            操作结果 JSON
        """
        if CONVERTER is None:
            return jsonify({"error": "Video converter not initialized"}), 500

        result = CONVERTER.abort(conversion_id)
        message, status_code = _ABORT_RESPONSES[result]
        if result != AbortResult.OK:
            return jsonify({"error": message, "result": result.value}), status_code

        return jsonify({
            "success": True,
            "message": message,
            "conversionId": conversion_id,
        })

    @app.route('/api/events', methods=['GET'])
    def conversion_events():
        """Server-Sent Events 推送状态变化"""
        if CONVERTER is None:
            return jsonify({"error": "Video converter not initialized"}), 500

        store = CONVERTER.store
        events = store.subscribe()

        def generate():
            try:
                yield ": connected\n\n"
                for conversion_id, status in store.get_all().items():
                    snapshot = {"type": "status", "conversionId": conversion_id,
                                "status": status.to_dict(conversion_id)}
                    yield f"data: {json.dumps(snapshot)}\n\n"
                while True:
                    try:
                        event = events.get(timeout=SSE_HEARTBEAT_INTERVAL)
                    except queue.Empty:
                        yield ": heartbeat\n\n"
                        continue
                    yield f"data: {json.dumps(event)}\n\n"
            finally:
                store.unsubscribe(events)

        response = Response(stream_with_context(generate()), mimetype='text/event-stream')
        response.headers['Cache-Control'] = 'no-cache'
        response.headers['X-Accel-Buffering'] = 'no'
        return response

    @app.route('/download/<path:filename>', methods=['GET'])
    def download_converted(filename):
        if CONVERTER is None:
            return "Video converter not initialized", 500
        converted_dir = os.path.abspath(CONVERTER.config.converted_dir)
        return send_from_directory(converted_dir, filename, as_attachment=True)

    @app.route('/api/files', methods=['GET'])
    def list_converted_files():
        """列出已转换的文件，按修改时间倒序"""
        if CONVERTER is None:
            return jsonify({"error": "Video converter not initialized"}), 500

        converted_dir = os.path.abspath(CONVERTER.config.converted_dir)
        try:
            entries = list(os.scandir(converted_dir))
        except FileNotFoundError:
            logger.info(f"Converted directory not found, returning empty list: {converted_dir}")
            return jsonify([])
        except OSError as e:
            logger.error(f"Failed to list files in {converted_dir}: {e}")
            return jsonify({"error": f"Failed to list files: {e}"}), 500

        files = []
        for entry in entries:
            if not entry.is_file():
                continue
            try:
                stat = entry.stat()
            except OSError as e:
                logger.warning(f"Could not get info for file {entry.name}: {e}")
                continue
            files.append((stat.st_mtime, {
                "name": entry.name,
                "size": stat.st_size,
                "modTime": datetime.fromtimestamp(stat.st_mtime).isoformat(),
                "url": f"/download/{entry.name}",
            }))

        files.sort(key=lambda item: item[0], reverse=True)
        return jsonify([info for _, info in files])

    @app.route('/api/delete-file/<path:filename>', methods=['DELETE'])
    def delete_converted_file(filename):
        if CONVERTER is None:
            return jsonify({"error": "Video converter not initialized"}), 500

        if ".." in filename or "/" in filename or "\\" in filename:
            logger.warning(f"Invalid filename requested for deletion: {filename}")
            return jsonify({"error": "Invalid filename"}), 400

        file_path = os.path.join(os.path.abspath(CONVERTER.config.converted_dir), filename)
        try:
            os.remove(file_path)
        except FileNotFoundError:
            logger.warning(f"File not found for deletion: {file_path}")
            return jsonify({"error": "File not found"}), 404
        except OSError as e:
            logger.error(f"Failed to delete file {file_path}: {e}")
            return jsonify({"error": f"Failed to delete file: {e}"}), 500

        logger.info(f"Deleted file: {file_path}")
        return jsonify({"success": True, "message": f"File '{filename}' deleted successfully"})
