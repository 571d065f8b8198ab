from typing import Optional

import messages
from broadcast import BroadcastEngine
from constants import GLOBAL_MEETING_ID
from directory import LeaveResult, MeetingDirectory
from logging_config import get_logger
from messages import DelimitedMessage, JsonMessage
from registry import Connection, ConnectionInfo, ConnectionRegistry
from relay import SIGNAL_TYPES, SignalingRelay

logger = get_logger(__name__)

# Meeting-scoped types relayed to the rest of the meeting as-is
MEETING_BROADCAST_TYPES = ("CHAT", "CHAT_MESSAGE", "FILE_SHARE", "WEBRTC_SIGNAL")


class MessageRouter:
    def __init__(
        self,
        registry: ConnectionRegistry,
        directory: MeetingDirectory,
        broadcast: BroadcastEngine,
        relay: SignalingRelay,
        ice_servers: list,
        server_info: dict = None,
    ):
        self.registry = registry
        self.directory = directory
        self.broadcast = broadcast
        self.relay = relay
        self.ice_servers = ice_servers
        self.server_info = server_info or {}

        self._delimited_handlers = {
            "MEETING_CREATED": self._on_meeting_created,
            "MEETING_AVAILABLE": self._on_meeting_created,
            "USER_JOINED": self._on_user_joined,
            "USER_LEFT": self._on_user_left,
            "MEETING_ENDED": self._on_meeting_ended,
            "AUDIO_STATUS": self._on_audio_status,
            "VIDEO_STATUS": self._on_video_status,
            "AUDIO_CONTROL": self._on_host_control,
            "VIDEO_CONTROL": self._on_host_control,
            "PING": self._on_ping,
        }
        for msg_type in MEETING_BROADCAST_TYPES:
            self._delimited_handlers[msg_type] = self._on_meeting_broadcast

        self._json_handlers = {
            "WEBRTC_READY": self._on_webrtc_ready,
            "PING": self._on_json_ping,
            "PONG": self._on_heartbeat_reply,
            "HEARTBEAT_ACK": self._on_heartbeat_reply,
            "GET_MEETINGS": self._on_get_meetings,
            "GET_PARTICIPANTS": self._on_get_participants,
            "GET_ICE_SERVERS": self._on_get_ice_servers,
            "GET_NETWORK_INFO": self._on_get_network_info,
            "DEVICE_INFO": self._on_device_info,
        }
        for msg_type in SIGNAL_TYPES:
            self._json_handlers[msg_type] = self._on_signal

    async def route(self, connection: Connection, raw: str):
        info = self.registry.get(connection)
        if not info:
            logger.debug("Dropping message from unregistered connection")
            return
        self.registry.touch(connection)

        message = messages.parse_message(raw)
        try:
            if isinstance(message, JsonMessage):
                handler = self._json_handlers.get(message.type)
                if handler:
                    await handler(connection, info, message)
                    return
                logger.debug(f"Unknown JSON type {message.type} from {info.display_id}, relaying globally")
            elif isinstance(message, DelimitedMessage):
                handler = self._delimited_handlers.get(message.type)
                if handler:
                    self._claim_sender_id(connection, info, message)
                    await handler(connection, info, message)
                    return
                logger.debug(f"Unknown type {message.type} from {info.display_id}, relaying globally")
            else:
                logger.debug(f"Simple message format from {info.display_id}, relaying globally")
            await self._on_opaque(connection, message)
        except Exception as e:
            logger.error(f"Error handling message from {info.display_id}: {e}", exc_info=True)

    # Greeting and lists

    async def send_welcome(self, connection: Connection):
        info = self.registry.get(connection)
        await self.broadcast.send(connection, messages.notification("CONNECTION_SUCCESS", {
            "userId": info.display_id,
            "connectionId": info.connection_id,
            "serverTime": messages.now_millis(),
        }))
        await self.broadcast.send(connection, self._ice_servers())
        await self.broadcast.send(connection, self._network_info(info))
        await self.broadcast.send(connection, self.meeting_list())

    def meeting_list(self) -> dict:
        return messages.notification("MEETING_LIST", [meeting.to_dict() for meeting in self.directory.all()])

    def participant_list(self, meeting_id: str) -> dict:
        meeting = self.directory.get(meeting_id)
        participants = []
        if meeting:
            for display_id in meeting.participants:
                found = self.registry.find_by_display_id(display_id)
                entry = {"userId": display_id, "isHost": display_id == meeting.host}
                if found:
                    peer = found[1]
                    entry.update({
                        "audioMuted": peer.audio_muted,
                        "videoOn": peer.video_on,
                        "isRecording": peer.is_recording,
                        "webrtcReady": peer.webrtc_ready,
                    })
                participants.append(entry)
        return messages.notification("PARTICIPANT_LIST", {
            "meetingId": meeting_id,
            "host": meeting.host if meeting else None,
            "participants": participants,
        })

    def _ice_servers(self) -> dict:
        return messages.notification("ICE_SERVERS", self.ice_servers)

    def _network_info(self, info: ConnectionInfo) -> dict:
        return messages.notification("NETWORK_INFO", {**self.server_info, "clientAddress": info.remote_address})

    # Membership

    async def leave_current_meeting(self, connection: Connection, info: ConnectionInfo) -> Optional[LeaveResult]:
        """Drop the connection from its meeting and tell whoever is left. Shared with teardown."""
        meeting_id = info.current_meeting_id
        if not meeting_id:
            return None
        result = self.directory.leave(meeting_id, info.display_id)
        if result.removed and not result.meeting_deleted:
            await self.broadcast.broadcast_to_meeting(messages.user_left(meeting_id, info.display_id), meeting_id, connection)
            await self._announce_host_change(result)
        return result

    async def _announce_host_change(self, result: LeaveResult):
        if not result.new_host:
            return
        await self.broadcast.broadcast_to_meeting(
            messages.system(result.meeting_id, "HOST_CHANGED", result.new_host, f"{result.new_host} is now the host"),
            result.meeting_id,
        )

    def _claim_sender_id(self, connection: Connection, info: ConnectionInfo, message: DelimitedMessage):
        if message.sender_id and message.sender_id != info.display_id:
            self.registry.rename(connection, message.sender_id)

    # Pipe-delimited handlers

    async def _on_meeting_broadcast(self, connection, info, message: DelimitedMessage):
        await self.broadcast.broadcast_to_meeting(message.raw, message.meeting_id, connection)

    async def _on_meeting_created(self, connection, info, message: DelimitedMessage):
        meeting_id = message.meeting_id
        if not meeting_id or meeting_id == GLOBAL_MEETING_ID:
            await self._on_opaque(connection, message)
            return
        if info.current_meeting_id and info.current_meeting_id != meeting_id:
            await self.leave_current_meeting(connection, info)
        meeting = self.directory.create_or_get(meeting_id, info.display_id, title=message.content or None)
        if info.display_id not in meeting.participants:
            self.directory.join(meeting_id, info.display_id)
        await self.broadcast.broadcast_global(message.raw, connection)

    async def _on_user_joined(self, connection, info, message: DelimitedMessage):
        meeting_id = message.meeting_id
        if not meeting_id or meeting_id == GLOBAL_MEETING_ID:
            await self._on_opaque(connection, message)
            return
        if info.current_meeting_id and info.current_meeting_id != meeting_id:
            await self.leave_current_meeting(connection, info)
        self.directory.join(meeting_id, info.display_id)
        await self.broadcast.broadcast_to_meeting(message.raw, meeting_id, connection)
        await self.broadcast.send(connection, self.participant_list(meeting_id))

    async def _on_user_left(self, connection, info, message: DelimitedMessage):
        meeting_id = message.meeting_id
        result = self.directory.leave(meeting_id, info.display_id)
        if not result.removed:
            logger.debug(f"{info.display_id} is not in meeting {meeting_id}, ignoring USER_LEFT")
            return
        await self.broadcast.broadcast_to_meeting(message.raw, meeting_id, connection)
        await self._announce_host_change(result)

    async def _on_meeting_ended(self, connection, info, message: DelimitedMessage):
        meeting_id = message.meeting_id
        if not self.directory.is_host(meeting_id, info.display_id):
            logger.debug(f"{info.display_id} cannot end meeting {meeting_id}: not the host")
            return
        # Members are notified before the meeting (and their membership) is gone
        await self.broadcast.broadcast_to_meeting(message.raw, meeting_id, connection)
        self.directory.end_meeting(meeting_id, info.display_id)

    async def _on_audio_status(self, connection, info, message: DelimitedMessage):
        content = message.content.lower()
        muted = None
        if "unmute" in content or "undeafen" in content:
            muted = False
        elif "mute" in content or "deafen" in content:
            muted = True

        await self.broadcast.broadcast_to_meeting(message.raw, message.meeting_id, connection)
        if muted is not None and muted != info.audio_muted:
            info.audio_muted = muted
            tag = "AUDIO_MUTED" if muted else "AUDIO_UNMUTED"
            await self.broadcast.broadcast_to_meeting(
                messages.system(message.meeting_id, tag, info.display_id), message.meeting_id, connection
            )

    async def _on_video_status(self, connection, info, message: DelimitedMessage):
        content = message.content.upper()
        if "RECORDING" in content:
            info.is_recording = "START" in content
        video_on = None
        if "STOP" in content or "OFF" in content:
            video_on = False
        elif "START" in content or "ON" in content:
            video_on = True

        await self.broadcast.broadcast_to_meeting(message.raw, message.meeting_id, connection)
        if "RECORDING" not in content and video_on is not None and video_on != info.video_on:
            info.video_on = video_on
            tag = "VIDEO_STARTED" if video_on else "VIDEO_STOPPED"
            await self.broadcast.broadcast_to_meeting(
                messages.system(message.meeting_id, tag, info.display_id), message.meeting_id, connection
            )

    async def _on_host_control(self, connection, info, message: DelimitedMessage):
        if not self.directory.is_host(message.meeting_id, info.display_id):
            logger.info(f"Rejected {message.type} from non-host {info.display_id} in meeting {message.meeting_id}")
            await self.broadcast.send(connection, messages.host_only_error(message.meeting_id, message.type))
            return
        if message.type == "VIDEO_CONTROL":
            command = message.content.upper()
            if command == "START_RECORDING":
                info.is_recording = True
            elif command == "STOP_RECORDING":
                info.is_recording = False
        await self.broadcast.broadcast_to_meeting(message.raw, message.meeting_id, connection)

    async def _on_ping(self, connection, info, message: DelimitedMessage):
        await self.broadcast.send(connection, messages.pong(message.meeting_id))

    async def _on_opaque(self, connection, message):
        await self.broadcast.broadcast_global(message.raw, connection)

    # JSON handlers

    async def _on_signal(self, connection, info, message: JsonMessage):
        target = message.data.get("targetUserId")
        if not target:
            logger.warning(f"{message.type} from {info.display_id} has no targetUserId, dropping")
            return
        await self.relay.relay(message.type, info.display_id, target, message.data)

    async def _on_webrtc_ready(self, connection, info, message: JsonMessage):
        info.webrtc_ready = True
        logger.debug(f"{info.display_id} is WebRTC ready")

    async def _on_json_ping(self, connection, info, message: JsonMessage):
        await self.broadcast.send(connection, {"type": "PONG", "timestamp": messages.now_millis()})

    async def _on_heartbeat_reply(self, connection, info, message: JsonMessage):
        # Activity was already refreshed by route()
        pass

    async def _on_get_meetings(self, connection, info, message: JsonMessage):
        await self.broadcast.send(connection, self.meeting_list())

    async def _on_get_participants(self, connection, info, message: JsonMessage):
        meeting_id = message.data.get("meetingId") or info.current_meeting_id
        await self.broadcast.send(connection, self.participant_list(meeting_id))

    async def _on_get_ice_servers(self, connection, info, message: JsonMessage):
        await self.broadcast.send(connection, self._ice_servers())

    async def _on_get_network_info(self, connection, info, message: JsonMessage):
        await self.broadcast.send(connection, self._network_info(info))

    async def _on_device_info(self, connection, info, message: JsonMessage):
        info.device_id = message.data.get("deviceId", info.device_id)
        info.device_name = message.data.get("deviceName", info.device_name)
        logger.debug(f"{info.display_id} device: {info.device_name} ({info.device_id})")
