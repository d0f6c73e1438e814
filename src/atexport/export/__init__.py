from .assembler import ExportManifest, assemble_bundle, bundle_filename, record_bundle_files, repository_filename
from .controller import ExportController, ExportJob, JobStatus, PartResult, plan_parts
from .sink import BundleSink, DirectorySink, PromptingSink, SaveLocation, resolve_sink
