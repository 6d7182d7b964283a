from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from scribe.config import PipelineConfig
    from scribe.server.server import ServerManager
    from scribe.services.manager import ServicesManager

# -------------------------------------------------------------- #
# Context Class
# -------------------------------------------------------------- #


class Context:
    """
    Shared handle passed to every server client and service.

    Carries the pipeline configuration plus the two managers, which are
    attached after construction because each of them needs the context first.
    """

    def __init__(self, config: "PipelineConfig | None" = None):
        from scribe.config import PipelineConfig

        self.config: PipelineConfig = config or PipelineConfig()
        self.server_manager: ServerManager | None = None
        self.services_manager: ServicesManager | None = None

    def set_server_manager(self, server_manager: "ServerManager") -> None:
        self.server_manager = server_manager

    def set_services_manager(self, services_manager: "ServicesManager") -> None:
        self.services_manager = services_manager
