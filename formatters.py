import datetime
import logging
import traceback

import discord

import constants
from session_tracker import CallStarted, CallEnded

def format_duration(duration):
    """通話時間を「分秒」の形式にフォーマットする (timedelta または秒数)"""
    if isinstance(duration, datetime.timedelta):
        duration = duration.total_seconds()
    seconds = max(int(duration), 0)
    minutes, seconds = divmod(seconds, constants.SECONDS_PER_MINUTE)
    return f"{minutes}分{seconds}秒"

def create_call_start_embed(notification: CallStarted):
    """通話開始通知の埋め込みを作成する"""
    embed = discord.Embed(title=constants.EMBED_TITLE_CALL_START, color=constants.EMBED_COLOR_CALL_START)
    embed.add_field(name=constants.EMBED_FIELD_VC_CHANNEL, value=f"<#{notification.channel_id}>", inline=True)
    embed.add_field(name=constants.EMBED_FIELD_STARTED_BY, value=f"<@{notification.started_by}>", inline=True)
    embed.add_field(name=constants.EMBED_FIELD_START_TIME, value=discord.utils.format_dt(notification.started_at, style="f"), inline=False)
    return embed

def create_call_end_embed(notification: CallEnded):
    """通話終了通知の埋め込みを作成する"""
    embed = discord.Embed(title=constants.EMBED_TITLE_CALL_END, color=constants.EMBED_COLOR_CALL_END)
    embed.add_field(name=constants.EMBED_FIELD_VC_CHANNEL, value=f"<#{notification.channel_id}>", inline=True)
    embed.add_field(name=constants.EMBED_FIELD_CALL_DURATION, value=format_duration(notification.duration), inline=True)
    return embed

def create_log_embed(record: logging.LogRecord):
    """ログレコードからDiscord埋め込みを作成する"""
    if record.levelno >= logging.ERROR:
        color = constants.EMBED_COLOR_ERROR
        title = "🚨 エラー発生！ 🚨"
    elif record.levelno >= logging.WARNING:
        color = constants.EMBED_COLOR_WARNING
        title = "⚠️ 警告！ ⚠️"
    else:
        color = constants.EMBED_COLOR_INFO
        title = "ℹ️ 情報 ℹ️"

    embed = discord.Embed(
        title=title,
        description=f"```\n{record.getMessage()}\n```",
        color=color,
        timestamp=datetime.datetime.fromtimestamp(record.created, tz=datetime.timezone.utc)
    )

    embed.add_field(name="レベル", value=record.levelname, inline=True)
    embed.add_field(name="ファイル:行", value=f"{record.filename}:{record.lineno}", inline=True)
    embed.add_field(name="関数", value=record.funcName, inline=True)

    if record.exc_info:
        # exc_info が存在する場合、トレースバック情報を追加
        exc_type, exc_value, exc_traceback = record.exc_info
        tb_string = ''.join(traceback.format_exception(exc_type, exc_value, exc_traceback))
        embed.add_field(name="トレースバック", value=f"```python\n{tb_string[:1000]}...\n```", inline=False) # Discordの文字数制限を考慮

    return embed
