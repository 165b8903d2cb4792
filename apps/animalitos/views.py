from __future__ import annotations

from typing import Optional

from django.conf import settings
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from .services.lottery_config import default_lottery_id, get_supported_lotteries
from .services.pipeline import InsufficientHistoryError, PipelineError, build_pipeline
from .services.scoring import ScoringWeights

SUPPORTED_LANGS = {'es', 'en'}
TRUTHY = {'1', 'true', 'yes', 'on'}


def _parse_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def _parse_float(value: Optional[str]) -> Optional[float]:
    if value in (None, ''):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in TRUTHY


def _param(request, name: str) -> Optional[str]:
    return request.POST.get(name) or request.GET.get(name)


def _get_lang(request) -> str:
    lang = request.GET.get('lang', 'es')
    return lang if lang in SUPPORTED_LANGS else 'es'


def _get_lottery(request) -> str:
    return _param(request, 'lottery') or default_lottery_id()


def _get_weights(request, defaults: ScoringWeights) -> Optional[ScoringWeights]:
    values = {name: _parse_float(request.GET.get(name)) for name in ('recent', 'total', 'absence')}
    if all(value is None for value in values.values()):
        return None
    return ScoringWeights(
        recent=defaults.recent if values['recent'] is None else values['recent'],
        total=defaults.total if values['total'] is None else values['total'],
        absence=defaults.absence if values['absence'] is None else values['absence'],
    )


def _check_token(request) -> Optional[JsonResponse]:
    expected_token = settings.ANIMALITOS_API_TOKEN
    auth_header = request.headers.get('Authorization', '')
    bearer_token = auth_header.replace('Bearer ', '').replace('Token ', '').strip() if auth_header else ''
    token = (
        request.headers.get('X-ANIMALITOS-TOKEN')
        or bearer_token
        or request.GET.get('token')
        or request.POST.get('token')
    )
    if not expected_token:
        return JsonResponse({'error': 'ANIMALITOS_API_TOKEN not configured'}, status=500)
    if token != expected_token:
        return JsonResponse({'error': 'Unauthorized'}, status=403)
    return None


def _pipeline_error(exc: PipelineError) -> JsonResponse:
    if isinstance(exc, InsufficientHistoryError):
        status = 422
    elif exc.stage == 'config':
        status = 404
    else:
        status = 400
    return JsonResponse({'error': str(exc), **exc.to_dict()}, status=status)


def api_status(request):
    lottery_id = _get_lottery(request)
    try:
        stats = build_pipeline().stats(lottery_id)
    except PipelineError as exc:
        return _pipeline_error(exc)
    return JsonResponse({
        **stats,
        'lotteries': [{'id': lottery.key, 'name': lottery.name} for lottery in get_supported_lotteries()],
    })


def api_history(request):
    lottery_id = _get_lottery(request)
    limit = _parse_int(request.GET.get('limit'), 50)
    try:
        items = build_pipeline().history(lottery_id, limit=max(limit, 0) or None)
    except PipelineError as exc:
        return _pipeline_error(exc)
    return JsonResponse({'lottery_id': lottery_id, 'count': len(items), 'results': items})


def api_predictions(request):
    lottery_id = _get_lottery(request)
    pipeline = build_pipeline()
    try:
        weights = _get_weights(request, pipeline.config.weights)
    except ValueError as exc:
        return JsonResponse({'error': str(exc)}, status=400)
    try:
        payload = pipeline.predict(
            lottery_id,
            weights=weights,
            lang=_get_lang(request),
            refresh=_parse_bool(request.GET.get('refresh'), True),
        )
    except PipelineError as exc:
        return _pipeline_error(exc)
    return JsonResponse(payload)


def api_accuracy(request):
    lottery_id = _get_lottery(request)
    days = _parse_int(request.GET.get('days'), 7)
    if days <= 0:
        return JsonResponse({'error': 'days must be a positive integer'}, status=400)
    try:
        return JsonResponse(build_pipeline().accuracy(lottery_id, days=days))
    except PipelineError as exc:
        return _pipeline_error(exc)


@csrf_exempt
@require_http_methods(['GET', 'POST'])
def api_refresh(request):
    denied = _check_token(request)
    if denied:
        return denied
    try:
        result = build_pipeline().refresh(_get_lottery(request))
    except PipelineError as exc:
        return _pipeline_error(exc)
    return JsonResponse(result)


@csrf_exempt
@require_http_methods(['POST'])
def api_backfill(request):
    denied = _check_token(request)
    if denied:
        return denied
    max_pages = _parse_int(_param(request, 'pages'), settings.ANIMALITOS_CONFIG['BACKFILL_MAX_PAGES'])
    if max_pages <= 0:
        return JsonResponse({'error': 'pages must be a positive integer'}, status=400)
    try:
        result = build_pipeline().backfill(
            _get_lottery(request),
            max_pages=max_pages,
            force=_parse_bool(_param(request, 'force'), False),
        )
    except PipelineError as exc:
        return _pipeline_error(exc)
    return JsonResponse(result)


@csrf_exempt
@require_http_methods(['POST'])
def api_manual_result(request):
    denied = _check_token(request)
    if denied:
        return denied
    try:
        result = build_pipeline().add_manual_result(
            _get_lottery(request),
            request.POST.get('date', ''),
            request.POST.get('hour', ''),
            request.POST.get('entity', ''),
        )
    except PipelineError as exc:
        return _pipeline_error(exc)
    return JsonResponse(result, status=201 if result['added'] else 409)
