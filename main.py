import discord
from discord import app_commands
from discord.ext import commands
import os
import asyncio
import logging
import sys
from dotenv import load_dotenv

import constants
import config
from database import init_db
from formatters import create_log_embed

# 他のモジュールのインポート
from commands import BotCommands
from notifier import NotificationDispatcher
from session_tracker import SessionTracker
from voice_events import VoiceEvents

# ロギングの設定
# 環境変数からロギングレベルを取得、設定されていなければ constants.LOGGING_LEVEL を使用
log_level = os.getenv('LOG_LEVEL', constants.LOGGING_LEVEL).upper()
logging.basicConfig(level=log_level, format=constants.LOGGING_FORMAT)
logger = logging.getLogger() # ルートロガーを取得

# カスタムロギングハンドラ
# WARNING 以上のログを、設定済みの各ギルドのログ転送先チャンネルに送信する
class DiscordHandler(logging.Handler):
    def __init__(self, bot_instance, registry):
        super().__init__(level=logging.WARNING)
        self.bot = bot_instance
        self.registry = registry
        self.setFormatter(logging.Formatter(constants.LOGGING_FORMAT))
        self.sent_messages = []  # 送信済みのメッセージを保存するリスト
        self.max_messages = constants.DISCORD_LOG_MAX_MESSAGES

    def emit(self, record):
        if not self.bot.is_ready():
            return # ボットが準備できていない場合は送信しない

        message = record.getMessage()
        if message in self.sent_messages:
            return  # 同じメッセージが既に送信されている場合は送信しない

        # メッセージを送信済みのリストに追加
        self.sent_messages.append(message)
        if len(self.sent_messages) > self.max_messages:
            self.sent_messages.pop(0)  # 古いメッセージを削除

        # Discordに送信するタスクを非同期で実行
        self.bot.loop.create_task(self.send_log_to_discord(record))

    async def send_log_to_discord(self, record):
        try:
            embed = create_log_embed(record)
            for guild_id in self.registry.guild_ids():
                channel_set = self.registry.lookup(guild_id)
                channel = self.bot.get_channel(channel_set.log_target_id) if channel_set else None
                if channel:
                    try:
                        await channel.send(embed=embed)
                    except discord.Forbidden:
                        # このハンドラ自身に再送されないよう WARNING 未満で記録する
                        logging.info(f"Bot does not have permission to send log messages to channel {channel.id} in guild {guild_id}.")
                    except discord.HTTPException as e:
                        logging.info(f"Failed to send log embed to Discord channel {channel.id}: {e}")
        except Exception as e:
            logging.info(f"Error in DiscordHandler.send_log_to_discord: {e}", exc_info=True)

# 設定の読み込み (環境変数からトークンを取得)
load_dotenv()
TOKEN = os.getenv('DISCORD_BOT_TOKEN')
if TOKEN is None:
    logging.error("DISCORD_BOT_TOKEN environment variable is not set.")
    sys.exit(1) # トークンがない場合は終了

# インテントの設定 (ボイスステートとギルドのみ必要)
intents = discord.Intents.default()
intents.voice_states = True

# Botのセットアップ
bot = commands.Bot(command_prefix=constants.COMMAND_PREFIX, intents=intents)

@bot.event
async def on_ready():
    logging.info(f'Logged in as {bot.user.name}')
    logging.info(f'Discord.py version: {discord.__version__}')

    # 再接続時の on_ready では状態を作り直さない
    if 'VoiceEvents' in bot.cogs:
        logging.info("Components already initialized. Skipping setup.")
        return

    # データベースの初期化
    try:
        await init_db()
        logging.info('Database initialized.')
    except Exception as e:
        logging.error(f"Database initialization failed: {e}", exc_info=True)
        # エラー発生時はボットを終了する
        await bot.close()
        sys.exit(1)

    # 通話ログ設定の読み込み
    channel_registry = config.load_registry()
    logging.info(f"Loaded channel settings for {len(channel_registry.guild_ids())} guilds.")

    # DiscordHandler をロガーに追加
    discord_handler = DiscordHandler(bot, channel_registry)
    logger.addHandler(discord_handler)
    logging.info("DiscordHandler added to logger.")

    # SessionTracker と通知送信タスクの作成
    notification_queue = asyncio.Queue()
    session_tracker = SessionTracker(channel_registry, notification_queue)
    notification_dispatcher = NotificationDispatcher(bot, notification_queue)
    notification_dispatcher.start()
    logging.info("SessionTracker and NotificationDispatcher instantiated.")

    # Cog の追加
    voice_events_cog = VoiceEvents(bot, channel_registry, session_tracker)
    await bot.add_cog(voice_events_cog)
    logging.info("VoiceEvents Cog added.")

    # 起動前から対象VCにいるメンバーを反映
    await voice_events_cog.sync_monitored_channels()

    # BotCommands のインスタンスを作成 (Cogとしては追加しない)
    bot_commands_instance = BotCommands(bot, channel_registry, voice_events_cog)
    logging.info("BotCommands instance created.")

    # スラッシュコマンドの手動登録と同期
    # Cog として追加した場合にコマンド同期が安定しないため、各コマンドをギルドコマンドとして手動でツリーに追加する
    logging.info("Starting manual command registration and synchronization for all joined guilds.")
    synced_guild_count = 0
    for guild in bot.guilds:
        logging.info(f'Starting command registration for guild {guild.id} ({guild.name}).')
        try:
            # 既存のギルドコマンドをクリアしてから再登録することで、CommandAlreadyRegistered エラーを回避
            bot.tree.clear_commands(guild=guild)
            bot.tree.add_command(bot_commands_instance.setch_callback, guild=guild)
            bot.tree.add_command(bot_commands_instance.delch_callback, guild=guild)
            bot.tree.add_command(bot_commands_instance.showch_callback, guild=guild)
            bot.tree.add_command(bot_commands_instance.call_history_callback, guild=guild)
            bot.tree.add_command(bot_commands_instance.help_callback, guild=guild)

            # ギルドコマンドを同期
            synced_commands = await bot.tree.sync(guild=guild)
            logging.info(f'Successfully synced commands for guild {guild.id} ({guild.name}). Synced command count: {len(synced_commands)}')
            synced_guild_count += 1

        except Exception as e:
            logging.error(f'Failed to register or sync commands for guild {guild.id} ({guild.name}): {e}', exc_info=True)

    logging.info(f'Command registration and synchronization completed. Successfully synced in {synced_guild_count} guilds.')
    logging.info('Bot is ready.')

@bot.tree.error
async def on_app_command_error(interaction: discord.Interaction, error: app_commands.AppCommandError):
    """スラッシュコマンド実行中にエラーが発生した場合のハンドラ"""
    guild_id = interaction.guild.id if interaction.guild else None
    logging.error(f"App command error in guild {guild_id} by {interaction.user.id}: {error}", exc_info=error)
    embed = discord.Embed(
        title="コマンドエラー",
        description=f"コマンドの実行中にエラーが発生しました。\n```\n{error}\n```",
        color=constants.EMBED_COLOR_ERROR
    )
    try:
        if interaction.response.is_done():
            await interaction.followup.send(embed=embed, ephemeral=True)
        else:
            await interaction.response.send_message(embed=embed, ephemeral=True)
    except discord.HTTPException:
        logging.info(f"Could not send error message for interaction in guild {guild_id}.")

@bot.event
async def on_error(event, *args, **kwargs):
    """Discord.py内部で発生するエラーのハンドラ"""
    logging.error(f"Unhandled Discord.py event error: {event}", exc_info=True)

# Botの実行
if __name__ == "__main__":
    try:
        bot.run(TOKEN, log_handler=None)
    except discord.errors.LoginFailure:
        logging.error("Invalid token was passed.", exc_info=True)
        sys.exit(1)
    except Exception as e:
        logging.error(f"An error occurred during bot execution: {e}", exc_info=True)
        sys.exit(1)
