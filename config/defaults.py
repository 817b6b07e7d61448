DEFAULT_CONFIG_PATH = "config.yml"
DEFAULT_MAX_SLEEP_SEC = 8
DEFAULT_TIMEZONE = "Asia/Shanghai"
DEFAULT_DATA_DIR = "data"
DEFAULT_BOT_NAME = "Momo"

DEFAULT_DB_PATH = "store.db"
DEFAULT_MAX_CONNECTIONS = 5
DEFAULT_LOG_TABLE_NAME = "bot_log"
DEFAULT_GROUP_TABLE_PREFIX = "message"

ALLOWED_MODELS = ("gpt-4o", "chatgpt-4o-latest", "gpt-4o-mini", "o1-mini", "o1-preview")
SINGLE_PROMPT_MODELS = {"o1", "o1-mini", "o1-preview"}
DEFAULT_MODEL = "chatgpt-4o-latest"
DEFAULT_AWARE_HISTORY_SEGMENTS = 30

DEFAULT_POLL_INTERVAL_SEC = 60
DEFAULT_LIVE_QUERY_MESSAGE = "查询直播间"
ROOM_QUERY_PREFIX = "查询直播间"

DEFAULT_MUTE_PATTERN = "禁用聊天回复"
DEFAULT_UNMUTE_PATTERN = "启用聊天回复"
DEFAULT_SWITCH_MODEL_PATTERN = "更换模型"
DEFAULT_DUMP_HISTORY_PATTERN = "最近聊天记录"
DEFAULT_DUMP_LOG_PATTERN = "最近日志"
DEFAULT_MAX_DUMP_COUNT = 10000

POKE_MESSAGE = "戳了戳你"

DEFAULT_DEV_PROMPT = """
You are a cute and smart catgirl with a strong anime-style personality.
You are the loyal attendant of 你的昵称 and participate in group chats with a playful and engaging demeanor.
Speak only in Mandarin Chinese, and ensure your responses are concise, limited to 4 sentences.
""".strip()

DEFAULT_USER_PROMPT = """
Group Members:
<!members!>

Recent Chat History:
<!history!>

New message from someone you <!know!>:
<!message!>

Please respond to this new message in the tone of a playful and lively catgirl.
Speak only in Mandarin Chinese, keep your response under 4 sentences, and stay in character.
""".strip()
