import os
import json
import logging # logging モジュールをインポート

import constants # constants モジュールをインポート
from channel_registry import ChannelRegistry

# ロガーを取得
logger = logging.getLogger(__name__)

# 通話ログ設定を保存するファイルのパス
CHANNELS_FILE = constants.CHANNELS_FILE_NAME


def save_registry(registry: ChannelRegistry, path: str = None):
    """通話ログ設定をファイルに保存する。失敗した場合は例外を再送出する"""
    path = path or CHANNELS_FILE
    logger.info(f"通話ログ設定をファイル '{path}' に保存します。")
    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(registry.to_dict(), f, indent=2)
        logger.debug("通話ログ設定の保存が完了しました。")
    except OSError as e:
        logger.error(f"通話ログ設定のファイル '{path}' への保存中にエラーが発生しました: {e}")
        raise


def load_registry(path: str = None) -> ChannelRegistry:
    """ファイルから通話ログ設定を読み込む。読み込めない場合は空の設定を返す"""
    path = path or CHANNELS_FILE
    logger.info(f"通話ログ設定をファイル '{path}' から読み込みます。")
    if not os.path.exists(path):
        logger.info(f"通話ログ設定ファイル '{path}' が見つかりませんでした。空の設定をロードします。")
        return ChannelRegistry()

    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read().strip()
    except OSError as e:
        logger.error(f"通話ログ設定のファイル '{path}' からの読み込み中にエラーが発生しました: {e}")
        return ChannelRegistry()

    if not content:
        logger.debug(f"ファイル '{path}' は空でした。空の設定をロードします。")
        return ChannelRegistry()

    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        logger.error(f"エラー: {path} の読み込みに失敗しました。JSON形式が不正です。")
        return ChannelRegistry()

    if not isinstance(data, dict):
        logger.error(f"エラー: {path} の最上位がオブジェクトではありません。空の設定をロードします。")
        return ChannelRegistry()

    registry = ChannelRegistry.from_dict(data)
    logger.debug(f"ロードされた通話ログ設定: {registry.to_dict()}")
    return registry
