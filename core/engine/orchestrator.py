# InsightGen - Query Resolution Orchestrator
# ===========================================
"""
Query Resolution Orchestrator
=============================
Decides how a natural-language question gets answered.

Resolution order (short-circuiting):
1. Session cache     - identical fingerprint within TTL returns immediately
2. Template match    - approved template above threshold, placeholders filled
                       through the terminology resolver
3. Semantic generation - external generator returns SQL or clarifications
4. Funnel            - clarifications handed back for the clarification engine

Any failure inside 2-3 becomes an ErrorResult naming the failing step; the
thinking log built so far is kept. Only error-free template/direct results with
SQL are written back to the cache. Metrics are emitted after every terminal
resolution, cache hits included.

Input validation is the only failure that escapes as an exception
(InvalidRequestError).
"""

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from core.audit.dispatch import BackgroundDispatcher
from core.audit.models import QueryPerformanceMetrics
from core.audit.service import MetricsSink
from core.templates.service import TemplateCatalogService

from .cache import DEFAULT_SESSION_CACHE_SIZE, DEFAULT_SESSION_CACHE_TTL, BoundedTTLCache, SessionResultCache
from .clarification import ClarificationSubmission
from .executor import QueryExecutor
from .fingerprint import DEFAULT_PROMPT_VERSION, QuestionFingerprint
from .generation import (
    GeneratedClarifications,
    GeneratedSQL,
    GenerationError,
    GenerationFailure,
    GenerationRequest,
    InvalidRequestError,
    SemanticGenerator,
)
from .models import (
    CacheHitTelemetry,
    DirectResult,
    ErrorResult,
    FilterMetrics,
    FunnelResult,
    OrchestrationResult,
    TemplateResult,
    ThinkingLog,
)
from .template_matcher import MATCH_THRESHOLD, TemplateMatch, match_template
from .terminology import TerminologyResolver, answer_value, fill_pattern

logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Invalid {name}='{value}', using default {default}")
        return default


@dataclass
class OrchestratorConfig:
    """Configuration for query resolution and the components it builds."""
    # Session cache
    session_cache_max_size: int = DEFAULT_SESSION_CACHE_SIZE
    session_cache_ttl_seconds: float = DEFAULT_SESSION_CACHE_TTL

    # Ontology cache
    ontology_cache_max_size: int = 500
    ontology_cache_ttl_seconds: float = 300

    # Template catalog
    template_match_threshold: float = MATCH_THRESHOLD
    template_similarity_threshold: float = 0.7

    # Fingerprint defaults
    default_prompt_version: str = DEFAULT_PROMPT_VERSION
    default_schema_version: Optional[str] = None

    # Storage
    ontology_db_path: Optional[str] = None
    template_db_path: Optional[str] = None
    clarification_audit_db_path: Optional[str] = None
    metrics_db_path: Optional[str] = None
    clinical_db_path: Optional[str] = None

    # Semantic generator service (mock generator when unset)
    generator_url: Optional[str] = None
    generator_timeout_seconds: float = 120.0
    generator_api_key: Optional[str] = None

    # Background audit/metrics workers
    audit_workers: int = 2

    @classmethod
    def from_env(cls) -> "OrchestratorConfig":
        """Create config from environment variables."""
        return cls(
            session_cache_max_size=int(_env_float("SESSION_CACHE_MAX_SIZE", DEFAULT_SESSION_CACHE_SIZE)),
            session_cache_ttl_seconds=_env_float("SESSION_CACHE_TTL_SECONDS", DEFAULT_SESSION_CACHE_TTL),
            ontology_cache_max_size=int(_env_float("ONTOLOGY_CACHE_MAX_SIZE", 500)),
            ontology_cache_ttl_seconds=_env_float("ONTOLOGY_CACHE_TTL_SECONDS", 300),
            template_match_threshold=_env_float("TEMPLATE_MATCH_THRESHOLD", MATCH_THRESHOLD),
            template_similarity_threshold=_env_float("TEMPLATE_SIMILARITY_THRESHOLD", 0.7),
            default_prompt_version=os.getenv("DEFAULT_PROMPT_VERSION", DEFAULT_PROMPT_VERSION),
            default_schema_version=os.getenv("DEFAULT_SCHEMA_VERSION") or None,
            ontology_db_path=os.getenv("ONTOLOGY_DB_PATH") or None,
            template_db_path=os.getenv("TEMPLATE_DB_PATH") or None,
            clarification_audit_db_path=os.getenv("CLARIFICATION_AUDIT_DB_PATH") or None,
            metrics_db_path=os.getenv("METRICS_DB_PATH") or None,
            clinical_db_path=os.getenv("CLINICAL_DB_PATH") or None,
            generator_url=os.getenv("SEMANTIC_GENERATOR_URL") or None,
            generator_timeout_seconds=_env_float("SEMANTIC_GENERATOR_TIMEOUT", 120.0),
            generator_api_key=os.getenv("SEMANTIC_GENERATOR_API_KEY") or None,
            audit_workers=int(_env_float("AUDIT_WORKERS", 2)),
        )


class QueryOrchestrator:
    """
    Root of query resolution.

    Collaborators are injected so tests can run isolated copies of the caches
    and mocks of the generator and executor.

    Example:
        orchestrator = QueryOrchestrator(
            cache=SessionResultCache(),
            templates=TemplateCatalogService(TemplateDB(path)),
            terminology=TerminologyResolver(OntologyLookup(store)),
            generator=MockSemanticGenerator(),
            executor=MockExecutor(),
        )
        result = orchestrator.resolve("show me patients with PI", "C1")
    """

    def __init__(self,
                 cache: SessionResultCache,
                 templates: Optional[TemplateCatalogService],
                 terminology: TerminologyResolver,
                 generator: SemanticGenerator,
                 executor: QueryExecutor,
                 metrics_sink: Optional[MetricsSink] = None,
                 dispatcher: Optional[BackgroundDispatcher] = None,
                 config: Optional[OrchestratorConfig] = None):
        self.cache = cache
        self.templates = templates
        self.terminology = terminology
        self.generator = generator
        self.executor = executor
        self.metrics_sink = metrics_sink
        self.config = config or OrchestratorConfig()
        self.dispatcher = dispatcher or (
            BackgroundDispatcher(max_workers=self.config.audit_workers, name="metrics") if metrics_sink else None
        )

    # =========================================================================
    # ENTRY POINTS
    # =========================================================================

    def resolve(self, question: str, customer_id: str,
                model_id: Optional[str] = None,
                clarifications: Optional[Mapping[str, Any]] = None,
                schema_version: Optional[str] = None,
                prompt_version: Optional[str] = None) -> OrchestrationResult:
        """
        Resolve a question to a template, direct, funnel or error result.

        Raises:
            InvalidRequestError: question or customer_id empty after trimming, or a
                clarification answer left empty
        """
        return self._resolve(question, customer_id, model_id, clarifications,
                             schema_version, prompt_version, terminology=None)

    def continue_with_answers(self, submission: ClarificationSubmission) -> OrchestrationResult:
        """Re-enter resolution with the answers from a completed clarification session."""
        logger.info(f"Resuming clarification session {submission.session_id[:8]} "
                    f"with {len(submission.answers)} answer(s)")
        return self._resolve(
            submission.question, submission.customer_id, submission.model_id, submission.answers,
            submission.schema_version, submission.prompt_version, terminology=submission.terminology,
        )

    # =========================================================================
    # PIPELINE
    # =========================================================================

    def _resolve(self, question: str, customer_id: str, model_id: Optional[str],
                 clarifications: Optional[Mapping[str, Any]], schema_version: Optional[str],
                 prompt_version: Optional[str],
                 terminology: Optional[Dict[str, List[str]]]) -> OrchestrationResult:
        if not isinstance(question, str) or not question.strip():
            raise InvalidRequestError("question")
        if not isinstance(customer_id, str) or not customer_id.strip():
            raise InvalidRequestError("customer_id")
        for placeholder_id, answer in (clarifications or {}).items():
            value = answer_value(answer)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise InvalidRequestError("clarifications", f"Answer for '{placeholder_id}' must not be empty")

        question = question.strip()
        customer_id = customer_id.strip()
        clarifications = dict(clarifications or {})
        schema_version = schema_version or self.config.default_schema_version
        prompt_version = prompt_version or self.config.default_prompt_version

        start_time = time.time()
        fingerprint = QuestionFingerprint.create(
            question, customer_id, model_id=model_id, clarifications=clarifications,
            schema_version=schema_version, prompt_version=prompt_version,
        )

        # Step 1: session cache
        cached = self._cache_lookup(fingerprint, start_time)
        if cached is not None:
            self._emit_metrics(cached, customer_id)
            return cached

        thinking = ThinkingLog()
        try:
            result = self._route(question, customer_id, model_id, clarifications,
                                 schema_version, prompt_version, terminology, thinking)
        except Exception as e:
            failed_step = thinking.current() or getattr(e, 'step', None) or "resolve"
            thinking.fail(failed_step, str(e))
            logger.error(f"Resolution failed at '{failed_step}' for customer {customer_id}: {e}")
            result = ErrorResult(question=question, error=str(e), failed_step=failed_step)

        result.thinking = thinking.steps
        result.total_duration_ms = (time.time() - start_time) * 1000
        logger.info(f"Resolved '{question[:60]}' as {result.mode.value} in {result.total_duration_ms:.0f}ms")

        # Step 5: write back only complete, reproducible results
        if result.is_cacheable():
            try:
                self.cache.set(fingerprint, result)
            except Exception as e:
                logger.warning(f"Session cache write failed (ignored): {e}")

        self._emit_metrics(result, customer_id)
        return result

    def _route(self, question: str, customer_id: str, model_id: Optional[str],
               clarifications: Dict[str, Any], schema_version: Optional[str],
               prompt_version: Optional[str], terminology: Optional[Dict[str, List[str]]],
               thinking: ThinkingLog) -> OrchestrationResult:
        # Step 2: template fast path
        match = self._match_template(question, customer_id, thinking)
        if match is not None:
            return self._resolve_template(match, question, customer_id, clarifications, thinking)

        # Step 3: semantic generation
        thinking.start("expand_terminology", "Expanding clinical terminology")
        expanded = dict(terminology or {})
        for phrase, values in self.terminology.extract_terms(question, customer_id).items():
            expanded.setdefault(phrase, values)
        thinking.complete("expand_terminology",
                          f"Expanded {len(expanded)} term(s)" if expanded else "No clinical terms to expand",
                          details={'terms': expanded} if expanded else None)

        thinking.start("generate_sql", "Generating SQL")
        request = GenerationRequest(
            question=question,
            customer_id=customer_id,
            model_id=model_id,
            clarifications=clarifications,
            terminology=expanded,
            schema_version=schema_version,
            prompt_version=prompt_version,
        )
        outcome = self.generator.generate(request)

        if isinstance(outcome, GenerationFailure):
            thinking.fail("generate_sql", outcome.error)
            logger.error(f"Generator reported failure for customer {customer_id}: {outcome.error}")
            return ErrorResult(question=question, error=outcome.error, failed_step=outcome.step or "generate_sql")

        if isinstance(outcome, GeneratedClarifications):
            thinking.complete("generate_sql",
                              f"Needs input on {len(outcome.clarifications) + len(outcome.confirmations)} item(s)")
            return FunnelResult(
                question=question,
                clarifications=list(outcome.clarifications),
                confirmations=list(outcome.confirmations),
                message=outcome.message,
            )

        if not isinstance(outcome, GeneratedSQL):
            raise GenerationError(f"Unexpected generator outcome: {type(outcome).__name__}")
        if not outcome.sql or not outcome.sql.strip():
            raise GenerationError("Generator returned empty SQL")
        thinking.complete("generate_sql", f"SQL generated by {outcome.model_used or 'generator'}",
                          details={'generation_time_ms': round(outcome.generation_time_ms, 1)})

        thinking.start("resolve_filters", "Resolving filter values")
        filter_metrics = FilterMetrics()
        if outcome.filters:
            _, filter_metrics = self.terminology.resolve_filters(outcome.filters, customer_id)
        thinking.complete("resolve_filters", f"{filter_metrics.total_filters} filter(s) resolved",
                          details=filter_metrics.to_dict())

        results = self._execute(outcome.sql, customer_id, thinking)
        return DirectResult(
            question=question,
            sql_text=outcome.sql,
            results=results,
            filter_metrics=filter_metrics,
            assumptions=list(outcome.assumptions),
            terminology=expanded,
        )

    def _match_template(self, question: str, customer_id: str,
                        thinking: ThinkingLog) -> Optional[TemplateMatch]:
        if self.templates is None:
            return None
        thinking.start("template_match", "Matching approved templates")
        templates = self.templates.get_approved_templates(customer_id)
        match = match_template(question, templates, threshold=self.config.template_match_threshold)
        if match is None:
            thinking.complete("template_match", f"No template match ({len(templates)} approved)")
            return None
        thinking.complete("template_match", f"Matched template '{match.template.name}'",
                          details=match.to_dict())
        return match

    def _resolve_template(self, match: TemplateMatch, question: str, customer_id: str,
                          clarifications: Dict[str, Any], thinking: ThinkingLog) -> OrchestrationResult:
        template = match.template
        thinking.start("resolve_placeholders", "Resolving template placeholders")
        resolution = self.terminology.resolve_placeholders(template, question, customer_id, clarifications)

        if not resolution.complete:
            missing = [spec.name for spec in resolution.unresolved]
            thinking.complete("resolve_placeholders", f"Needs input for {', '.join(missing)}")
            return FunnelResult(
                question=question,
                clarifications=[self.terminology.clarification_for(spec, template) for spec in resolution.unresolved],
                template_id=template.id,
                template_name=template.name,
                message=f"Template '{template.name}' needs more information",
            )

        sql = fill_pattern(template.sql_pattern, resolution.rendered)
        thinking.complete("resolve_placeholders", f"Resolved {len(resolution.values)} placeholder(s)",
                          details={'values': resolution.values})

        try:
            results = self._execute(sql, customer_id, thinking)
        except Exception:
            self._record_usage(template.id, success=False)
            raise
        self._record_usage(template.id, success=True)

        return TemplateResult(
            question=question,
            sql_text=sql,
            results=results,
            filter_metrics=resolution.metrics,
            template_id=template.id,
            template_name=template.name,
            confidence=match.confidence,
            placeholders=resolution.values,
        )

    def _execute(self, sql: str, customer_id: str, thinking: ThinkingLog):
        thinking.start("execute_sql", "Executing SQL")
        results = self.executor.execute(sql, customer_id)
        thinking.complete("execute_sql", f"Returned {results.row_count} row(s)",
                          details={'execution_time_ms': round(results.execution_time_ms, 1)})
        return results

    # =========================================================================
    # FAIL-OPEN SIDE CHANNELS
    # =========================================================================

    def _cache_lookup(self, fingerprint: QuestionFingerprint,
                      start_time: float) -> Optional[OrchestrationResult]:
        try:
            entry = self.cache.get_entry(fingerprint)
        except Exception as e:
            logger.warning(f"Session cache read failed, treating as miss: {e}")
            return None
        if entry is None:
            return None

        result = entry.value
        latency_ms = (time.time() - start_time) * 1000
        result.cache_hit = CacheHitTelemetry(
            latency_ms=latency_ms,
            estimated_saved_ms=max(result.total_duration_ms - latency_ms, 0.0),
            hit_count=entry.hit_count,
        )
        return result

    def _record_usage(self, template_id: Optional[str], success: bool) -> None:
        if not template_id or self.templates is None:
            return
        try:
            self.templates.record_usage(template_id, success)
        except Exception as e:
            logger.warning(f"Template usage update failed for {template_id} (ignored): {e}")

    def _emit_metrics(self, result: OrchestrationResult, customer_id: str) -> None:
        if self.metrics_sink is None or self.dispatcher is None:
            return
        try:
            filter_metrics = getattr(result, 'filter_metrics', None)
            metrics = QueryPerformanceMetrics(
                question=result.question,
                customer_id=customer_id,
                mode=result.mode.value,
                total_duration_ms=(result.cache_hit.latency_ms if result.cache_hit else result.total_duration_ms),
                filter_metrics=filter_metrics.to_dict() if filter_metrics is not None else None,
                clarification_requested=isinstance(result, FunnelResult),
                cache_hit=result.cache_hit is not None,
                estimated_saved_ms=result.cache_hit.estimated_saved_ms if result.cache_hit else None,
                failed_step=result.failed_step if isinstance(result, ErrorResult) else None,
            )
        except Exception as e:
            logger.warning(f"Could not build query metrics (ignored): {e}")
            return
        self.dispatcher.submit(self.metrics_sink.record, metrics, description="query metrics")

    def shutdown(self) -> None:
        if self.dispatcher is not None:
            self.dispatcher.shutdown()


def create_orchestrator(config: Optional[OrchestratorConfig] = None,
                        ontology_store=None,
                        metrics_sink: Optional[MetricsSink] = None) -> QueryOrchestrator:
    """
    Build an orchestrator and its collaborators from configuration.

    The ontology store defaults to DuckDB at ONTOLOGY_DB_PATH (in-memory when
    unset) and is seeded with the built-in clinical ontology when empty. The
    generator and executor fall back to mocks when no service URL or clinical
    database is configured.
    """
    from core.audit.service import AuditService
    from core.ontology import DEFAULT_ONTOLOGY, DuckDBOntologyStore, OntologyLookup
    from core.templates.database import TemplateDB

    from .executor import DuckDBExecutor, MockExecutor
    from .generation import MockSemanticGenerator, RemoteSemanticGenerator

    config = config or OrchestratorConfig.from_env()

    if ontology_store is None:
        ontology_store = DuckDBOntologyStore(config.ontology_db_path)
        if ontology_store.count() == 0:
            loaded = ontology_store.load_entries(DEFAULT_ONTOLOGY)
            logger.info(f"Seeded ontology store with {loaded} built-in entries")

    ontology = OntologyLookup(ontology_store, cache=BoundedTTLCache(
        max_size=config.ontology_cache_max_size, ttl_seconds=config.ontology_cache_ttl_seconds,
        name="Ontology cache",
    ))

    if config.generator_url:
        generator: SemanticGenerator = RemoteSemanticGenerator(
            config.generator_url, timeout=config.generator_timeout_seconds, api_key=config.generator_api_key)
    else:
        logger.warning("SEMANTIC_GENERATOR_URL not set - using mock semantic generator")
        generator = MockSemanticGenerator()

    if config.clinical_db_path:
        executor: QueryExecutor = DuckDBExecutor(config.clinical_db_path)
    else:
        logger.warning("CLINICAL_DB_PATH not set - using mock executor")
        executor = MockExecutor()

    orchestrator = QueryOrchestrator(
        cache=SessionResultCache(max_size=config.session_cache_max_size,
                                 ttl_seconds=config.session_cache_ttl_seconds),
        templates=TemplateCatalogService(TemplateDB(config.template_db_path),
                                         similarity_threshold=config.template_similarity_threshold),
        terminology=TerminologyResolver(ontology),
        generator=generator,
        executor=executor,
        metrics_sink=metrics_sink or AuditService(config.metrics_db_path),
        config=config,
    )
    logger.info(f"Query orchestrator created (cache={config.session_cache_max_size} entries, "
                f"ttl={config.session_cache_ttl_seconds}s)")
    return orchestrator
