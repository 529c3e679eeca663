"""Exceptions shared by the import pipeline layers."""


class ImportPipelineError(RuntimeError):
    """A fault that fails the whole import job (never retried)."""


class CsvParseError(ImportPipelineError):
    """The CSV payload cannot be parsed as a whole."""


class NoActiveAccountError(ImportPipelineError):
    """The user has no active account to attach imported transactions to."""


class JobNotFoundError(ImportPipelineError):
    """The queue delivered a job id with no durable record."""


class AttemptsExhaustedError(ImportPipelineError):
    """The job was delivered more times than the attempt limit allows."""


class ImportSubmissionError(RuntimeError):
    """The job record was created but could not be handed to the queue."""
