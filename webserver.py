import os
import json
import copy
import atexit
import logging
import threading
from logging.handlers import TimedRotatingFileHandler

from flask import Flask, jsonify
from flask_cors import CORS

from converter import ConverterConfig, StatusStore, VideoConverter
from converter import api as converter_api

logger = logging.getLogger()

# Configuration file path
CONFIG_FILE = "config/config.json"

DEFAULT_CONFIG = {
    "port": 3000,
    "converter": {
        "worker_count": os.cpu_count() or 1,
        "uploads_dir": "uploads",
        "converted_dir": "converted",
        "ffmpeg_path": "ffmpeg",
        "ffprobe_path": "ffprobe",
        "exiftool_path": "exiftool",
        "probe_timeout": 15,
        "status_ttl": 3600,
        "cleanup_interval": 300,
        "max_file_size_mb": 2000,
        "allowed_origins": ["*"]
    }
}

# 环境变量 -> converter 配置项
ENV_OVERRIDES = {
    "WORKER_COUNT": "worker_count",
    "UPLOADS_DIR": "uploads_dir",
    "CONVERTED_DIR": "converted_dir",
    "MAX_FILE_SIZE_MB": "max_file_size_mb",
    "ALLOWED_ORIGINS": "allowed_origins",
}

# 由 create_app 设置
CONVERTER_CONFIG = None
STATUS_STORE = None
VIDEO_CONVERTER = None

_stop_cleanup = threading.Event()


def setup_logging(log_dir='logs'):
    """Configure console logging and a daily rotating log file"""
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    # 配置较少日志输出的模块
    for module in ['urllib3', 'werkzeug']:
        logging.getLogger(module).setLevel(logging.WARNING)

    # 设置文件日志处理器
    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    # 添加按日期滚动的文件处理器
    file_handler = TimedRotatingFileHandler(
        os.path.join(log_dir, 'webserver.log'),
        when='midnight',
        interval=1,
        backupCount=3  # 保留3天日志
    )
    file_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
    file_handler.setLevel(logging.INFO)
    logger.addHandler(file_handler)


def load_config():
    """Load configuration file, then apply environment overrides"""
    config = copy.deepcopy(DEFAULT_CONFIG)
    try:
        if os.path.exists(CONFIG_FILE):
            with open(CONFIG_FILE, 'r', encoding='utf-8') as f:
                loaded_config = json.load(f)
                config["converter"].update(loaded_config.pop("converter", {}) or {})
                config.update(loaded_config)
                logging.info(f"Loaded configuration file: {CONFIG_FILE}")
        else:
            # Create config directory if it doesn't exist
            config_dir = os.path.dirname(CONFIG_FILE)
            if config_dir:
                os.makedirs(config_dir, exist_ok=True)
            # Save default config
            with open(CONFIG_FILE, 'w', encoding='utf-8') as f:
                json.dump(config, f, ensure_ascii=False, indent=2)
                logging.info(f"Created default configuration file: {CONFIG_FILE}")
    except (OSError, ValueError) as e:
        logging.error(f"Failed to load configuration file: {str(e)}")

    # 优先使用环境变量
    for env_key, config_key in ENV_OVERRIDES.items():
        value = os.environ.get(env_key)
        if value:
            config["converter"][config_key] = value
    if os.environ.get("PORT"):
        config["port"] = os.environ["PORT"]

    return config


def create_app(app_config):
    """Build the Flask app and the conversion service from a loaded config

    Args:
        app_config: 全局配置字典

    Returns:
        Flask 应用实例
    """
    global CONVERTER_CONFIG, STATUS_STORE, VIDEO_CONVERTER

    CONVERTER_CONFIG = ConverterConfig.from_app_config(app_config)
    logging.info(f"Configuration loaded: Workers={CONVERTER_CONFIG.worker_count}, "
                 f"MaxFileSize={CONVERTER_CONFIG.max_file_size_mb}MB, "
                 f"AllowedOrigins={CONVERTER_CONFIG.allowed_origins}")
    if CONVERTER_CONFIG.allowed_origins == ["*"]:
        logging.warning("allowed_origins not restricted. Allowing all origins ('*').")

    # Directory setup
    os.makedirs(CONVERTER_CONFIG.uploads_dir, exist_ok=True)
    os.makedirs(CONVERTER_CONFIG.converted_dir, exist_ok=True)

    # Initialize Flask application
    app = Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = (CONVERTER_CONFIG.max_file_size_mb + 1) * 1024 * 1024
    CORS(app, origins=CONVERTER_CONFIG.allowed_origins)

    # Initialize conversion service
    STATUS_STORE = StatusStore(progress_ceiling=CONVERTER_CONFIG.progress_ceiling)
    VIDEO_CONVERTER = VideoConverter(CONVERTER_CONFIG, STATUS_STORE)
    converter_api.init_converter(VIDEO_CONVERTER)
    converter_api.register_routes(app)

    @app.route('/api/health', methods=['GET'])
    def health():
        return jsonify({"status": "ok", "converter": VIDEO_CONVERTER.get_status_summary()})

    return app


def _cleanup_loop():
    """定期驱逐已完成且过期的转换状态"""
    while not _stop_cleanup.wait(CONVERTER_CONFIG.cleanup_interval):
        try:
            evicted = STATUS_STORE.evict_completed(CONVERTER_CONFIG.status_ttl)
            if evicted:
                logging.info(f"Evicted {evicted} expired conversion statuses")
        except Exception as e:
            logging.error(f"Error in status cleanup loop: {e}")


def shutdown():
    """Stop accepting jobs and wait for running conversions"""
    _stop_cleanup.set()
    VIDEO_CONVERTER.stop()


if __name__ == '__main__':
    setup_logging()
    current_config = load_config()
    app = create_app(current_config)

    VIDEO_CONVERTER.start(CONVERTER_CONFIG.worker_count)
    threading.Thread(target=_cleanup_loop, daemon=True, name="StatusCleanup").start()
    atexit.register(shutdown)

    app.run(host='0.0.0.0', port=int(current_config.get('port', 3000)), debug=False, threaded=True)
