from varannot.annotation.input_writer import VariantAnnotationInputWriter, format_input_line
from varannot.annotation.invoker import (
    AnnotatorCommand,
    ExternalAnnotatorInvoker,
    InputMode,
    OutputMode,
    build_vep_command,
    validate_gzip_output,
)

__all__ = [
    "VariantAnnotationInputWriter",
    "format_input_line",
    "AnnotatorCommand",
    "ExternalAnnotatorInvoker",
    "InputMode",
    "OutputMode",
    "build_vep_command",
    "validate_gzip_output",
]
