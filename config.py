import os

# 기본 디렉토리 설정
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# 경로 설정
STATIC_DIR = os.path.join(BASE_DIR, "static")
LOG_FILE = os.path.join(BASE_DIR, "launch.log")
SNAPSHOT_DIR = os.getenv("EXAM_SNAPSHOT_DIR", os.path.join(BASE_DIR, ".snapshots"))

# 서버 설정
DEFAULT_HOST = os.getenv("HOST", "127.0.0.1")
DEFAULT_PORT = int(os.getenv("PORT", "8000"))

# 백엔드 / 실시간 채널
BACKEND_URL = os.getenv("EXAM_BACKEND_URL", "http://localhost:5001/api")
SOCKET_URL = os.getenv("EXAM_SOCKET_URL", BACKEND_URL.rsplit("/api", 1)[0])
AUTH_TOKEN = os.getenv("EXAM_AUTH_TOKEN", "")
STUDENT_ID = os.getenv("EXAM_STUDENT_ID") or None
HTTP_TIMEOUT = 20.0

# 세션 설정
SESSION_TTL = 3600              # 1시간
SESSION_CLEANUP_INTERVAL = 300  # 5분

# 타이머 설정
TICK_INTERVAL = 1.0
PROGRESS_SAVE_EVERY = 1             # 틱 단위 (1초마다 스냅샷)
DEFAULT_QUESTION_TIME_LIMIT = int(os.getenv("EXAM_QUESTION_TIME_LIMIT", "60"))

# 감독 설정
AUTO_TERMINATE_MIN_SEVERITY = os.getenv("EXAM_AUTO_TERMINATE_SEVERITY", "low")
ALERT_DURATIONS = {"low": 5.0, "medium": 8.0, "high": 10.0}
WARNING_BANNER_SECONDS = 3.0
RAPID_MOUSE_THRESHOLD = 50      # 1초 윈도우당 이벤트 수
RAPID_KEY_THRESHOLD = 100
SCROLL_THRESHOLD = 20
DEVTOOLS_THRESHOLD = 160        # outer - inner 뷰포트 차이 (px)
TAB_SWITCH_LIMIT = int(os.getenv("EXAM_TAB_SWITCH_LIMIT", "3"))  # 0 이면 제한 없음

# 제출 설정
AUTO_SUBMIT_RETRIES = 2
AUTO_SUBMIT_RETRY_DELAY = 1.0
POST_SUBMIT_REDIRECT_DELAY = 3.5
DASHBOARD_PATH = "/dashboard"
