import logging
from dataclasses import dataclass, field

import constants

# ロガーを取得
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MonitoredChannelSet:
    """
    ギルドごとの通知先テキストチャンネルと監視対象VCチャンネルの組。
    """
    log_target_id: int
    channel_ids: frozenset = field(default_factory=frozenset)

    def __contains__(self, channel_id):
        return channel_id is not None and channel_id in self.channel_ids


class ChannelRegistry:
    """
    ギルドIDから MonitoredChannelSet を引くためのインメモリの設定ストア。
    値は書き換えずに差し替えるため、lookup の戻り値は呼び出し側で保持しても変化しません。
    """
    def __init__(self):
        # キー: guild_id (int), 値: MonitoredChannelSet
        self._channel_sets = {}
        logger.debug("ChannelRegistry initialized.")

    def lookup(self, guild_id: int) -> MonitoredChannelSet | None:
        """指定されたギルドの設定を返す。未設定の場合は None"""
        return self._channel_sets.get(guild_id)

    def is_monitored(self, guild_id: int, channel_id: int | None) -> bool:
        channel_set = self.lookup(guild_id)
        return channel_set is not None and channel_id in channel_set

    def guild_ids(self) -> list[int]:
        return list(self._channel_sets.keys())

    def add_channels(self, guild_id: int, log_target_id: int, channel_ids):
        """
        監視対象VCを追加し、通知先チャンネルを設定します。
        ギルドが未設定の場合は新しく作成します。既に登録済みのチャンネルは重複しません。
        """
        current = self._channel_sets.get(guild_id)
        existing_ids = current.channel_ids if current else frozenset()
        updated = MonitoredChannelSet(log_target_id=log_target_id, channel_ids=existing_ids | frozenset(channel_ids))
        self._channel_sets[guild_id] = updated
        logger.info(f"Guild {guild_id}: log target {log_target_id}, monitored channels {sorted(updated.channel_ids)}")

    def remove_channels(self, guild_id: int, channel_ids):
        """
        監視対象VCを削除します。未登録のチャンネルや未設定のギルドは無視します。
        設定が空になってもギルドの設定自体は削除しません。
        """
        current = self._channel_sets.get(guild_id)
        if current is None:
            logger.debug(f"Guild {guild_id} is not configured. Nothing to remove.")
            return
        updated = MonitoredChannelSet(log_target_id=current.log_target_id, channel_ids=current.channel_ids - frozenset(channel_ids))
        self._channel_sets[guild_id] = updated
        logger.info(f"Guild {guild_id}: monitored channels {sorted(updated.channel_ids)}")

    def restore(self, guild_id: int, channel_set: MonitoredChannelSet | None):
        """
        ギルドの設定を lookup で取得しておいた値に戻します。
        None の場合はギルドの設定を削除します (設定の保存に失敗した際の巻き戻し用)。
        """
        if channel_set is None:
            self._channel_sets.pop(guild_id, None)
        else:
            self._channel_sets[guild_id] = channel_set
        logger.info(f"Guild {guild_id}: settings restored to {channel_set}")

    def to_dict(self) -> dict:
        """設定ファイルに保存する形式 (JSON) に変換する"""
        return {
            str(guild_id): {
                constants.SETTINGS_KEY_LOG_CHANNEL_ID: channel_set.log_target_id,
                constants.SETTINGS_KEY_VC_CHANNEL_IDS: sorted(channel_set.channel_ids),
            }
            for guild_id, channel_set in self._channel_sets.items()
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChannelRegistry":
        """設定ファイルの内容から ChannelRegistry を作成する。不正なエントリは読み飛ばす"""
        registry = cls()
        for guild_key, entry in data.items():
            try:
                guild_id = int(guild_key)
                log_target_id = int(entry[constants.SETTINGS_KEY_LOG_CHANNEL_ID])
                channel_ids = [int(channel_id) for channel_id in entry.get(constants.SETTINGS_KEY_VC_CHANNEL_IDS, [])]
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping malformed settings entry for guild '{guild_key}': {e}")
                continue
            registry.add_channels(guild_id, log_target_id, channel_ids)
        return registry
