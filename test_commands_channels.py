import pytest
import unittest.mock as mock
import sys
import os
import discord

# Add the parent directory to the Python path
sys.path.append(os.path.abspath(os.path.dirname(__file__)))

from commands import BotCommands # Assuming BotCommands is the Cog class
from channel_registry import ChannelRegistry
import constants

GUILD_ID = 456


@pytest.fixture
def mock_interaction():
    interaction = mock.AsyncMock(spec=discord.Interaction)
    interaction.response = mock.AsyncMock(spec=discord.InteractionResponse)
    interaction.user = mock.Mock(spec=discord.User)
    interaction.user.id = 123
    interaction.guild = mock.Mock(spec=discord.Guild)
    interaction.guild.id = GUILD_ID
    return interaction


def make_channel(spec, channel_id, name):
    channel = mock.Mock(spec=spec)
    channel.id = channel_id
    channel.name = name
    return channel


@pytest.fixture
def log_channel():
    return make_channel(discord.TextChannel, 1000, "call-log")


@pytest.fixture
def vc_channels():
    return [make_channel(discord.VoiceChannel, 1, "general"), make_channel(discord.VoiceChannel, 2, "gaming")]


@pytest.fixture
def registry():
    return ChannelRegistry()


@pytest.fixture
def mock_voice_events():
    return mock.AsyncMock()


@pytest.fixture
def bot_commands_instance(registry, mock_voice_events):
    return BotCommands(bot=mock.AsyncMock(), registry=registry, voice_events=mock_voice_events)


@pytest.mark.asyncio
@mock.patch('commands.config.save_registry')
async def test_setch_adds_channels_and_saves(mock_save, bot_commands_instance, registry, mock_voice_events, mock_interaction, log_channel, vc_channels):
    await bot_commands_instance.setch_callback.callback(bot_commands_instance, mock_interaction, log_channel, vc_channels[0], vc_channels[1])

    channel_set = registry.lookup(GUILD_ID)
    assert channel_set.log_target_id == 1000
    assert channel_set.channel_ids == frozenset({1, 2})
    mock_save.assert_called_once_with(registry)
    mock_voice_events.sync_channels.assert_awaited_once_with(GUILD_ID, [1, 2])
    mock_interaction.response.send_message.assert_called_once_with(
        "設定を保存しました。\nログ転送先チャンネル: **#call-log**\n新たに追加された対象VC: `#general`, `#gaming`",
        ephemeral=True
    )


@pytest.mark.asyncio
@mock.patch('commands.config.save_registry')
async def test_setch_twice_does_not_duplicate(mock_save, bot_commands_instance, registry, mock_interaction, log_channel, vc_channels):
    await bot_commands_instance.setch_callback.callback(bot_commands_instance, mock_interaction, log_channel, vc_channels[0])
    await bot_commands_instance.setch_callback.callback(bot_commands_instance, mock_interaction, log_channel, vc_channels[0])
    assert len(registry.lookup(GUILD_ID).channel_ids) == 1


@pytest.mark.asyncio
@mock.patch('commands.config.save_registry', side_effect=OSError("read-only file system"))
async def test_setch_save_error(mock_save, bot_commands_instance, registry, mock_voice_events, mock_interaction, log_channel, vc_channels):
    await bot_commands_instance.setch_callback.callback(bot_commands_instance, mock_interaction, log_channel, vc_channels[0])

    mock_interaction.response.send_message.assert_called_once_with(constants.MESSAGE_SAVE_ERROR, ephemeral=True)
    mock_voice_events.sync_channels.assert_not_called()
    # 保存できなかった設定はメモリ上にも残らない
    assert registry.lookup(GUILD_ID) is None


@pytest.mark.asyncio
@mock.patch('commands.config.save_registry')
async def test_delch_without_settings(mock_save, bot_commands_instance, mock_interaction, vc_channels):
    await bot_commands_instance.delch_callback.callback(bot_commands_instance, mock_interaction, vc_channels[0])

    mock_interaction.response.send_message.assert_called_once_with(constants.MESSAGE_NO_SETTINGS, ephemeral=True)
    mock_save.assert_not_called()


@pytest.mark.asyncio
@mock.patch('commands.config.save_registry')
async def test_delch_removes_channels(mock_save, bot_commands_instance, registry, mock_interaction, vc_channels):
    registry.add_channels(GUILD_ID, 1000, [1, 2])

    await bot_commands_instance.delch_callback.callback(bot_commands_instance, mock_interaction, vc_channels[0])

    assert registry.lookup(GUILD_ID).channel_ids == frozenset({2})
    mock_save.assert_called_once_with(registry)
    mock_interaction.response.send_message.assert_called_once_with(
        "以下のVCチャンネルを削除しました: `#general`",
        ephemeral=True
    )


@pytest.mark.asyncio
@mock.patch('commands.config.save_registry', side_effect=OSError("read-only file system"))
async def test_delch_save_error_keeps_previous_channels(mock_save, bot_commands_instance, registry, mock_interaction, vc_channels):
    registry.add_channels(GUILD_ID, 1000, [1, 2])

    await bot_commands_instance.delch_callback.callback(bot_commands_instance, mock_interaction, vc_channels[0])

    mock_interaction.response.send_message.assert_called_once_with(constants.MESSAGE_SAVE_ERROR, ephemeral=True)
    assert registry.lookup(GUILD_ID).channel_ids == frozenset({1, 2})


@pytest.mark.asyncio
@mock.patch('commands.config.save_registry', side_effect=OSError("read-only file system"))
async def test_setch_save_error_keeps_previous_log_channel(mock_save, bot_commands_instance, registry, mock_interaction, log_channel, vc_channels):
    registry.add_channels(GUILD_ID, 2000, [2])

    await bot_commands_instance.setch_callback.callback(bot_commands_instance, mock_interaction, log_channel, vc_channels[0])

    channel_set = registry.lookup(GUILD_ID)
    assert channel_set.log_target_id == 2000
    assert channel_set.channel_ids == frozenset({2})


@pytest.mark.asyncio
async def test_showch_lists_settings(bot_commands_instance, registry, mock_interaction):
    registry.add_channels(GUILD_ID, 1000, [2, 1])

    await bot_commands_instance.showch_callback.callback(bot_commands_instance, mock_interaction)

    embed = mock_interaction.response.send_message.call_args.kwargs['embed']
    assert embed.fields[0].value == "<#1000>"
    assert embed.fields[1].value == "<#1>\n<#2>"


@pytest.mark.asyncio
@mock.patch('commands.get_recent_call_sessions', new_callable=mock.AsyncMock)
async def test_call_history_lists_sessions(mock_get_sessions, bot_commands_instance, mock_interaction):
    mock_get_sessions.return_value = [{
        constants.COLUMN_CHANNEL_ID: 1,
        constants.COLUMN_STARTED_BY: 11,
        constants.COLUMN_START_TIME: "2024-05-01T12:00:00+00:00",
        constants.COLUMN_DURATION: 125,
    }]

    await bot_commands_instance.call_history_callback.callback(bot_commands_instance, mock_interaction, 5)

    mock_get_sessions.assert_awaited_once_with(GUILD_ID, 5)
    embed = mock_interaction.response.send_message.call_args.kwargs['embed']
    assert embed.title == constants.EMBED_TITLE_CALL_HISTORY
    assert embed.description == "<t:1714564800:f> <#1> <@11> 2分5秒"


@pytest.mark.asyncio
@mock.patch('commands.get_recent_call_sessions', new_callable=mock.AsyncMock)
async def test_call_history_empty(mock_get_sessions, bot_commands_instance, mock_interaction):
    mock_get_sessions.return_value = []

    await bot_commands_instance.call_history_callback.callback(bot_commands_instance, mock_interaction, 5)

    mock_interaction.response.send_message.assert_called_once_with(constants.MESSAGE_NO_CALL_HISTORY, ephemeral=True)


@pytest.mark.asyncio
@mock.patch('commands.get_recent_call_sessions', new_callable=mock.AsyncMock)
async def test_call_history_rejects_out_of_range_count(mock_get_sessions, bot_commands_instance, mock_interaction):
    await bot_commands_instance.call_history_callback.callback(bot_commands_instance, mock_interaction, 0)

    mock_get_sessions.assert_not_called()
    args, kwargs = mock_interaction.response.send_message.call_args
    assert kwargs['ephemeral'] is True
