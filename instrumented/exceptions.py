class TelemetryConfigurationError(ValueError):
    def __init__(self, key: str, value: str, message: str):
        super().__init__(f"Invalid value for {key}: '{value}'. {message}")
        self.key = key
        self.value = value


class PipelineAssemblyError(Exception):
    def __init__(self, message: str, inner_exception=None):
        super().__init__(message)
        self.inner_exception = inner_exception


class PipelineAlreadyPublishedError(Exception):
    def __init__(self):
        super().__init__(
            "A telemetry pipeline was already published for this process. "
            "The pipeline can be published only once, at startup."
        )
