# マジックナンバーを定義するファイル

# Time related constants
SECONDS_PER_MINUTE = 60

# Config related constants
CHANNELS_FILE_NAME = "channels.json"
SETTINGS_KEY_LOG_CHANNEL_ID = "logChannelId"
SETTINGS_KEY_VC_CHANNEL_IDS = "vcChannelIds"

# Database related constants
DB_FILE_NAME = "call_log.db"
TABLE_CALL_SESSIONS = "call_sessions"
COLUMN_GUILD_ID = "guild_id"
COLUMN_CHANNEL_ID = "channel_id"
COLUMN_STARTED_BY = "started_by"
COLUMN_START_TIME = "start_time"
COLUMN_DURATION = "duration"

# Logging related constants
LOGGING_LEVEL = "WARNING" # デフォルト値
LOGGING_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'
DISCORD_LOG_MAX_MESSAGES = 10 # 重複送信を防ぐために保持するメッセージ数

# Bot related constants
COMMAND_PREFIX = '!'

# Call history related constants
CALL_HISTORY_DEFAULT_COUNT = 5
CALL_HISTORY_MAX_COUNT = 20

# Embed related constants
EMBED_COLOR_ERROR = 0xFF0000 # Red
EMBED_COLOR_WARNING = 0xE67E22 # Orange
EMBED_COLOR_INFO = 0x3498DB # Blue
EMBED_COLOR_CALL_START = 0x2ECC71 # Green
EMBED_COLOR_CALL_END = 0xE74C3C # Red

EMBED_TITLE_CALL_START = "通話開始"
EMBED_TITLE_CALL_END = "通話終了"
EMBED_TITLE_CHANNEL_SETTINGS = "通話ログ設定"
EMBED_TITLE_CALL_HISTORY = "最近の通話履歴"
EMBED_TITLE_COMMAND_LIST = "コマンド一覧"

EMBED_FIELD_VC_CHANNEL = "VCチャンネル"
EMBED_FIELD_STARTED_BY = "始めた人"
EMBED_FIELD_START_TIME = "開始時間"
EMBED_FIELD_CALL_DURATION = "通話時間"
EMBED_FIELD_LOG_CHANNEL = "ログ転送先チャンネル"
EMBED_FIELD_MONITORED_CHANNELS = "対象VC"

MESSAGE_CHANNELS_SAVED = "設定を保存しました。\nログ転送先チャンネル: **#{log_channel}**\n新たに追加された対象VC: {channels}"
MESSAGE_CHANNELS_DELETED = "以下のVCチャンネルを削除しました: {channels}"
MESSAGE_NO_SETTINGS = "このサーバーには設定がありません。"
MESSAGE_SAVE_ERROR = "設定の保存中にエラーが発生しました。"
MESSAGE_NO_MONITORED_CHANNELS = "対象VCが登録されていません"
MESSAGE_NO_CALL_HISTORY = "通話履歴がありません"
MESSAGE_CALL_HISTORY_COUNT_ERROR = "表示件数は1以上{max_count}以下の整数で指定してください。"
