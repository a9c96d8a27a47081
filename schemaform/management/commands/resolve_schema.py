"""Resolve $ref references in a JSON or YAML schema file.

Usage:
    python manage.py resolve_schema schema.yaml
    python manage.py resolve_schema schema.json --reference /definitions/address
    python manage.py resolve_schema schema.json --circular-ok -o resolved.json
"""

import json
from pathlib import Path

import yaml
from django.core.management.base import BaseCommand, CommandError

from schemaform.references import (
    SchemaReferenceCache,
    dereference_schema,
    is_remote,
    reference_pointers,
    resolve_schema_reference,
)
from schemaform.remote import RemoteSchemaError, RemoteSchemaFetcher


def load_schema_file(path: Path):
    """Load a schema file (YAML or JSON) based on extension."""
    with open(path, "r", encoding="utf-8") as f:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(f) or {}
        return json.load(f)


class Command(BaseCommand):
    help = "Resolve one reference in, or inline every reference of, a JSON Schema file"

    def add_arguments(self, parser):
        parser.add_argument("path", type=Path, help="Schema file (.json, .yaml or .yml)")
        parser.add_argument(
            "--reference",
            default=None,
            help="Resolve only this pointer (e.g. /definitions/address) instead of the whole document",
        )
        parser.add_argument(
            "--circular-ok",
            action="store_true",
            help="Expand circular references once instead of leaving {\"$ref\": ...} placeholders",
        )
        parser.add_argument(
            "-o", "--output",
            type=Path,
            default=None,
            help="Write output to file (default: stdout)",
        )
        parser.add_argument(
            "--no-remote",
            action="store_true",
            help="Leave http(s) references unresolved",
        )

    def _resolve(self, schema, options, cache, fetcher):
        if options["reference"] is not None:
            return resolve_schema_reference(options["reference"], schema, cache, options["circular_ok"], fetcher)
        return dereference_schema(schema, cache, options["circular_ok"], fetcher)

    def handle(self, *args, **options):
        path = options["path"]
        if not path.is_file():
            raise CommandError(f"File not found: {path}")

        try:
            schema = load_schema_file(path)
        except (ValueError, yaml.YAMLError) as exc:
            raise CommandError(f"Could not parse {path}: {exc}") from exc

        cache = SchemaReferenceCache()
        fetcher = None if options["no_remote"] else RemoteSchemaFetcher()
        failed = set()
        try:
            result = self._resolve(schema, options, cache, fetcher)
            # Remote documents arrive in the background; wait for them and
            # resolve again until nothing new can be fetched.
            while fetcher is not None:
                waiting = [
                    pointer for pointer in reference_pointers(result)
                    if is_remote(pointer) and pointer not in cache and pointer not in failed
                ]
                if not waiting:
                    break
                for uri in waiting:
                    try:
                        fetcher.fetch(uri, cache).result()
                    except RemoteSchemaError as exc:
                        failed.add(uri)
                        self.stderr.write(self.style.WARNING(f"Skipping {uri}: {exc}"))
                result = self._resolve(schema, options, cache, fetcher)
        finally:
            if fetcher is not None:
                fetcher.shutdown(wait=False)

        output_json = json.dumps(result, indent=2, ensure_ascii=False) + "\n"
        if options["output"]:
            options["output"].parent.mkdir(parents=True, exist_ok=True)
            options["output"].write_text(output_json, encoding="utf-8")
            self.stdout.write(self.style.SUCCESS(f"Wrote: {options['output']}"))
        else:
            self.stdout.write(output_json, ending="")

        for pointer in cache.circular_pointers():
            self.stderr.write(self.style.WARNING(f"Circular reference: {pointer!r}"))
