from cnab_k8s_driver.domain.enums.run import RUN_TERMINAL, ImageType, RunPhase

__all__ = [
    "ImageType",
    "RunPhase",
    "RUN_TERMINAL",
]
