import asyncio
import logging

import discord

from database import record_call_session
from formatters import create_call_start_embed, create_call_end_embed
from session_tracker import CallStarted, CallEnded

# ロガーを取得
logger = logging.getLogger(__name__)

class NotificationDispatcher:
    """
    SessionTracker の送信キューから通知イベントを取り出し、
    ログ転送先チャンネルへEmbedを送信します。通話終了時は通話履歴も記録します。
    送信に失敗しても再送はしません。
    """
    def __init__(self, bot, queue: asyncio.Queue):
        self.bot = bot
        self.queue = queue
        self._task = None
        logger.info("NotificationDispatcher initialized.")

    def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
            logger.info("Started notification dispatcher task.")

    def stop(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.info("Stopped notification dispatcher task.")

    async def run(self):
        while True:
            notification = await self.queue.get()
            try:
                await self.dispatch(notification)
            except Exception as e:
                logger.error(f"An error occurred while dispatching notification {notification}: {e}", exc_info=True)
            finally:
                self.queue.task_done()

    async def dispatch(self, notification):
        if isinstance(notification, CallStarted):
            await self._send_notification_embed(notification.log_target_id, create_call_start_embed(notification))
        elif isinstance(notification, CallEnded):
            await self._send_notification_embed(notification.log_target_id, create_call_end_embed(notification))
            await self._record_call(notification)
        else:
            logger.warning(f"Unknown notification type: {type(notification).__name__}")

    async def _send_notification_embed(self, log_target_id: int, embed: discord.Embed):
        """
        ログ転送先チャンネルにEmbedを送信します。
        チャンネルの存在確認、種別確認、例外処理を行います。
        """
        log_channel = self.bot.get_channel(log_target_id)
        if log_channel is None:
            logger.warning(f"Log channel not found: {log_target_id}. Notification dropped.")
            return
        if not isinstance(log_channel, discord.TextChannel):
            logger.warning(f"Log channel {log_target_id} is not a text channel. Notification dropped.")
            return
        try:
            await log_channel.send(embed=embed)
            logger.info(f"Sent notification to channel {log_target_id}.")
        except discord.Forbidden:
            logger.error(f"Error: Missing send permissions for channel {log_channel.name} ({log_target_id}).")
        except discord.HTTPException as e:
            logger.error(f"An error occurred while sending notification to channel {log_target_id}: {e}")

    async def _record_call(self, notification: CallEnded):
        try:
            await record_call_session(
                notification.guild_id,
                notification.channel_id,
                notification.started_by,
                notification.started_at,
                int(notification.duration.total_seconds()),
            )
        except Exception as e:
            logger.error(f"Failed to record call in channel {notification.channel_id} ({notification.guild_id}): {e}")
