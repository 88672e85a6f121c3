"""Failure conditions of an analysis run.

Every exception carries a Croatian ``user_message`` that is shown as-is in the
browser. Per-file failures (``FileFailed`` subclasses) name the file they
belong to so the batch can attribute them.
"""
from typing import Iterable, List, Optional


class AnalyzerError(Exception):
    user_message = "Došlo je do nepoznate pogreške."

    def __init__(self, message: Optional[str] = None):
        if message is not None:
            self.user_message = message
        super().__init__(self.user_message)


class ConfigurationError(AnalyzerError):
    pass


class UnsupportedFileType(AnalyzerError):
    def __init__(self, filename: str):
        self.filename = filename
        super().__init__(f"Nepodržani format datoteke: {filename}")


class FileFailed(AnalyzerError):
    """A single file of the batch yielded no data."""

    def __init__(self, filename: str, message: str):
        self.filename = filename
        super().__init__(message)


class ReadFailed(FileFailed):
    def __init__(self, filename: str):
        super().__init__(filename, f"Datoteku nije moguće pročitati: {filename}")


class ExtractionFailed(AnalyzerError):
    """Remote extraction error; the batch attaches the file name."""

    def __init__(self, message: str = "Izdvajanje podataka nije uspjelo."):
        super().__init__(message)


class FileExtractionFailed(FileFailed):
    def __init__(self, filename: str):
        super().__init__(filename, f"Izdvajanje podataka nije uspjelo: {filename}")


class EmptyExtraction(FileFailed):
    def __init__(self, filename: str):
        super().__init__(filename, f"U datoteci nisu pronađene rezervacije: {filename}")


class NoFilesSelected(AnalyzerError):
    user_message = "Niste odabrali nijednu datoteku."


class AllFilesFailed(AnalyzerError):
    def __init__(self, filenames: Iterable[str]):
        self.filenames: List[str] = list(filenames)
        super().__init__(
            "Nije moguće izdvojiti podatke ni iz jedne datoteke: "
            f"{', '.join(self.filenames)}. Pokušajte s jasnijom slikom ili dokumentom."
        )


class AnalysisFailed(AnalyzerError):
    user_message = "Generiranje financijske analize nije uspjelo. Podaci o rezervacijama su sačuvani, pokušajte ponovno."


class ArchiveGenerationFailed(AnalyzerError):
    user_message = "Greška pri generiranju ZIP datoteke s računima."
