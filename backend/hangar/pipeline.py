"""Uplink processing: decode, dispatch on the device command, persist or reply."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

import httpx

from .downlink import post_downlink
from .envelope import decode_uplink, encode_downlink
from .errors import DecodeError, DownlinkError, EncodeError, ScheduleNotFound, StoreError
from .payload import ClientReply, Command, DeviceMessage, decode_message, encode_reply
from .schemas import DownlinkEnvelope, ScheduleEntry, UplinkEnvelope
from .store import DeviceStateStore

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    RECEIVED = "received"
    ENVELOPE_DECODED = "envelope decoded"
    PAYLOAD_DECODED = "payload decoded"
    DISPATCHED = "dispatched"
    STATUS_PERSISTED = "status persisted"
    REPLY_BUILT = "reply built"
    REPLY_SENT = "reply sent"
    COMPLETE = "complete"
    FAILED = "failed"


class FailureReason(str, Enum):
    BAD_ENVELOPE = "bad envelope"
    BAD_PAYLOAD = "bad payload"
    STORE_ERROR = "store error"
    ENCODE_ERROR = "encode error"
    DOWNLINK_POST_ERROR = "downlink post error"


@dataclass
class PipelineResult:
    """Where one uplink ended up. Only decode failures reach the HTTP caller."""

    state: Stage = Stage.RECEIVED
    command: Command | None = None
    raw_command: str | None = None
    failure: FailureReason | None = None
    detail: str | None = None
    trail: list[Stage] = field(default_factory=lambda: [Stage.RECEIVED])

    def advance(self, stage: Stage) -> "PipelineResult":
        self.state = stage
        self.trail.append(stage)
        return self

    def fail(self, reason: FailureReason, detail: str) -> "PipelineResult":
        self.failure = reason
        self.detail = detail
        return self.advance(Stage.FAILED)


class UplinkRejected(DecodeError):
    """A decode-stage failure; the inbound request must be rejected."""

    def __init__(self, reason: FailureReason, detail: str):
        super().__init__(detail)
        self.reason = reason


class UplinkPipeline:
    def __init__(
        self,
        store: DeviceStateStore,
        http: httpx.AsyncClient,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._http = http
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    def decode(self, body: bytes, result: PipelineResult | None = None) -> tuple[UplinkEnvelope, DeviceMessage]:
        """Decode the envelope and its payload; attach device id and receipt time."""

        result = result or PipelineResult()
        try:
            envelope = decode_uplink(body)
        except DecodeError as exc:
            raise UplinkRejected(FailureReason.BAD_ENVELOPE, str(exc)) from exc
        result.advance(Stage.ENVELOPE_DECODED)

        try:
            message = decode_message(envelope.payload_raw)
        except DecodeError as exc:
            raise UplinkRejected(FailureReason.BAD_PAYLOAD, str(exc)) from exc

        # server receipt time always wins over anything the device reports
        message.msg_time = self._now()
        message.dev_id = envelope.dev_id
        result.advance(Stage.PAYLOAD_DECODED)

        logger.info("Process uplink from app: %s", envelope.app_id)
        logger.info("Process uplink from device: %s", envelope.dev_id)
        logger.info("Serial: %s", envelope.hardware_serial)
        return envelope, message

    async def process(self, body: bytes) -> PipelineResult:
        """Run one uplink through the pipeline.

        Raises UplinkRejected for a bad envelope or payload. Anything that goes
        wrong after that is logged and recorded on the returned result.
        """

        result = PipelineResult()
        try:
            envelope, message = self.decode(body, result)
        except UplinkRejected as exc:
            logger.warning("Rejecting uplink (%s): %s", exc.reason.value, exc)
            raise

        result.command = message.command
        result.raw_command = message.cmd
        _log_message(message)
        result.advance(Stage.DISPATCHED)

        if result.command is Command.STATUS:
            return await self._persist_status(message, result)
        if result.command is Command.START:
            return await self._send_startup_reply(envelope, message, result)

        logger.info("No action for command %r from %s", message.cmd, message.dev_id)
        return result.advance(Stage.COMPLETE)

    async def _persist_status(self, message: DeviceMessage, result: PipelineResult) -> PipelineResult:
        try:
            await self._store.put_status(message.dev_id, message.msg_time, message.to_status_record())
        except StoreError as exc:
            logger.exception("Unable to persist status message from %s", message.dev_id)
            return result.fail(FailureReason.STORE_ERROR, str(exc))
        result.advance(Stage.STATUS_PERSISTED)
        return result.advance(Stage.COMPLETE)

    async def _load_schedule(self, dev_id: str) -> list[ScheduleEntry]:
        try:
            return await self._store.get_schedule(dev_id)
        except ScheduleNotFound:
            logger.info("No schedule stored for %s; replying with an empty schedule", dev_id)
            return []

    async def _send_startup_reply(
        self, envelope: UplinkEnvelope, message: DeviceMessage, result: PipelineResult
    ) -> PipelineResult:
        logger.info("Send client startup response: %s", envelope.dev_id)

        try:
            schedule = await self._load_schedule(message.dev_id)
        except StoreError as exc:
            logger.exception("Unable to retrieve schedule for %s", message.dev_id)
            return result.fail(FailureReason.STORE_ERROR, str(exc))

        reply = ClientReply(cur_time=self._now(), schedule=schedule)
        try:
            body = encode_downlink(
                DownlinkEnvelope(
                    dev_id=envelope.dev_id,
                    port=envelope.port,
                    confirmed=False,
                    payload_raw=encode_reply(reply),
                )
            )
        except EncodeError as exc:
            logger.exception("Unable to encode startup response for %s", envelope.dev_id)
            return result.fail(FailureReason.ENCODE_ERROR, str(exc))
        result.advance(Stage.REPLY_BUILT)

        if not envelope.downlink_url:
            logger.warning("Uplink from %s carried no downlink_url; response not sent", envelope.dev_id)
            return result.fail(FailureReason.DOWNLINK_POST_ERROR, "missing downlink_url")

        logger.info("Send response to: %s", envelope.downlink_url)
        try:
            await post_downlink(self._http, envelope.downlink_url, body)
        except DownlinkError as exc:
            logger.exception("Unable to send downlink to %s", envelope.dev_id)
            return result.fail(FailureReason.DOWNLINK_POST_ERROR, str(exc))
        result.advance(Stage.REPLY_SENT)
        return result.advance(Stage.COMPLETE)


def _log_message(message: DeviceMessage) -> None:
    logger.info("Client command: %s", message.cmd)
    logger.info("Client time: %s", message.my_time)
    states = message.channel_states()
    if states is None:
        return
    for channel, state in enumerate(states, start=1):
        logger.info("Power port %d state: %s", channel, state)
