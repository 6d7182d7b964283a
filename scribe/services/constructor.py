from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from scribe.context import Context

from scribe.constructor import ServerManagerType
from scribe.services.logger import AsyncLoggingService
from scribe.services.manager import ServicesManager

# -------------------------------------------------------------- #
# Constructor for Dynamic Creation of Services Manager
# -------------------------------------------------------------- #


def construct_services_manager(
    service_type: ServerManagerType,
    context: "Context",
    recording_storage_path: str | None = None,
    default_logging_path: str = "logs",
    log_file: str | None = None,
    use_timestamp_logs: bool = True,
    console_output: bool = True,
) -> ServicesManager:
    """Construct and return a services manager instance based on the service type.

    Args:
        service_type: Type of server manager (DEVELOPMENT, PRODUCTION or TESTING)
        context: Context instance containing server and configuration
        recording_storage_path: Root for per-session recording files (defaults to config)
        default_logging_path: Directory to store log files (default: "logs")
        log_file: Specific log file name (optional, overrides use_timestamp_logs)
        use_timestamp_logs: If True and log_file is None, creates timestamped log files (default: True)
        console_output: Echo log lines to stdout
    """
    if service_type not in (
        ServerManagerType.DEVELOPMENT,
        ServerManagerType.PRODUCTION,
        ServerManagerType.TESTING,
    ):
        raise ValueError(f"Unsupported ServerManagerType: {service_type}")

    from scribe.services.delivery.manager import DeliveryService
    from scribe.services.ffmpeg_manager.manager import FFmpegManagerService
    from scribe.services.recorder.manager import RecorderManagerService
    from scribe.services.recording_file_manager.manager import RecordingFileManagerService
    from scribe.services.session_registry.manager import SessionRegistry
    from scribe.services.summarization.manager import SummarizationService
    from scribe.services.transcription.manager import TranscriptionService

    # create logger
    logging_service = AsyncLoggingService(
        context=context,
        log_dir=default_logging_path,
        log_file=log_file,
        use_timestamp=use_timestamp_logs,
        console_output=console_output,
        min_level="INFO" if service_type == ServerManagerType.PRODUCTION else "DEBUG",
    )

    # -------------------------------------------------------------- #
    # Service Managers Setup
    # -------------------------------------------------------------- #

    recording_file_service_manager = RecordingFileManagerService(
        context=context, recording_storage_path=recording_storage_path
    )
    ffmpeg_service_manager = FFmpegManagerService(context=context)

    session_registry = SessionRegistry(context=context)
    transcription_service_manager = TranscriptionService(context=context)
    summarization_service_manager = SummarizationService(context=context)
    delivery_service_manager = DeliveryService(context=context)

    recorder_service_manager = RecorderManagerService(context=context)

    return ServicesManager(
        context=context,
        logging_service=logging_service,
        recording_file_service_manager=recording_file_service_manager,
        ffmpeg_service_manager=ffmpeg_service_manager,
        session_registry=session_registry,
        transcription_service_manager=transcription_service_manager,
        summarization_service_manager=summarization_service_manager,
        delivery_service_manager=delivery_service_manager,
        recorder_service_manager=recorder_service_manager,
    )
