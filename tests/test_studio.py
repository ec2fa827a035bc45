"""Tests for the story studio workflow."""

import asyncio

import pytest

from story_studio.errors import ExportError, NotFoundError, StageError
from story_studio.models.project import Failed, Pending, Success
from story_studio.pipeline.stages import Stage


async def advance_to_narrations(studio, prompt="a robot learns to paint"):
    await studio.generate_story(prompt)
    await studio.generate_image_prompts()
    await studio.generate_narrations()


async def advance_to_videos(studio):
    await advance_to_narrations(studio)
    await studio.generate_audio()
    await studio.generate_images()
    await studio.generate_videos()


@pytest.mark.asyncio
async def test_robot_scenario_with_one_failing_narration(studio, backend):
    backend.fail_audio = {2}

    await studio.generate_story("a robot learns to paint")
    assert studio.project.story
    assert "a robot learns to paint" in studio.project.full_prompt

    await studio.generate_image_prompts()
    prompts = studio.project.image_prompts
    assert len(prompts) == 5
    assert all(prompts)

    await studio.generate_narrations()
    assert len(studio.project.narrations) == 5

    await studio.generate_audio()
    audio = studio.project.audio_results()
    assert len(audio) == 5
    assert audio[2] == Failed(message="speech service returned 503")
    for i in (0, 1, 3, 4):
        assert audio[i] == Success(value=f"https://cdn.test/audio/scene_{i}.mp3")

    backend.fail_audio.clear()
    backend.calls["audio"].clear()
    result = await studio.retry_audio(2)

    assert result == Success(value="https://cdn.test/audio/scene_2.mp3")
    assert backend.calls["audio"] == [2]
    after = studio.project.audio_results()
    assert [after[i] for i in (0, 1, 3, 4)] == [audio[i] for i in (0, 1, 3, 4)]


@pytest.mark.asyncio
async def test_audio_stage_saves_history_snapshot(studio, history):
    await advance_to_narrations(studio)

    project = await studio.generate_audio()

    assert project.id is not None
    saved = await history.load(project.id)
    assert saved.audio_results() == project.audio_results()


@pytest.mark.asyncio
async def test_single_shot_failure_leaves_project_untouched(studio, backend):
    await studio.generate_story("a robot learns to paint")
    before = studio.project

    backend.fail_story = True
    with pytest.raises(StageError) as excinfo:
        await studio.generate_story("a different idea")

    assert excinfo.value.upstream
    assert "text model unavailable" in excinfo.value.message
    assert studio.project == before


@pytest.mark.asyncio
async def test_stage_prerequisites_are_enforced(studio):
    with pytest.raises(StageError) as excinfo:
        await studio.generate_image_prompts()
    assert not excinfo.value.upstream

    with pytest.raises(StageError):
        await studio.generate_story("   ")


@pytest.mark.asyncio
async def test_insufficient_image_prompts(studio, backend):
    await studio.generate_story("a robot learns to paint")
    backend.prompt_lines = 3

    with pytest.raises(StageError, match=r"Insufficient image prompts generated \(3/5\)"):
        await studio.generate_image_prompts()
    assert studio.project.image_prompts == []


@pytest.mark.asyncio
async def test_extra_image_prompts_are_trimmed(studio, backend):
    await studio.generate_story("a robot learns to paint")
    backend.prompt_lines = 7

    await studio.generate_image_prompts()

    assert len(studio.project.image_prompts) == 5


@pytest.mark.asyncio
async def test_narration_count_mismatch(studio, backend):
    await studio.generate_story("a robot learns to paint")
    await studio.generate_image_prompts()
    backend.narration_count = 4

    with pytest.raises(StageError, match="Mismatch in number of narrations returned."):
        await studio.generate_narrations()
    assert studio.project.narrations == []


@pytest.mark.asyncio
async def test_video_fails_only_where_image_is_missing(studio, backend):
    await advance_to_narrations(studio)
    failing_prompt = studio.project.image_prompts[1]
    backend.fail_image_prompts = {failing_prompt}

    await studio.generate_images()
    await studio.generate_videos()

    videos = studio.project.generated_video
    assert videos[1] == Failed(message="Image URL for prompt 2 is not available.")
    assert all(isinstance(videos[i], Success) for i in (0, 2, 3, 4))
    assert len(backend.calls["video"]) == 4


@pytest.mark.asyncio
async def test_forced_image_retry_regenerates_one_slot(studio, backend):
    await advance_to_narrations(studio)
    await studio.generate_images()
    backend.calls["image"].clear()

    await studio.retry_image(3)
    assert backend.calls["image"] == []

    await studio.retry_image(3, force=True)
    assert backend.calls["image"] == [studio.project.image_prompts[3]]


@pytest.mark.asyncio
async def test_retry_before_generation_is_rejected(studio):
    await advance_to_narrations(studio)

    with pytest.raises(StageError):
        await studio.retry_image(0)


@pytest.mark.asyncio
async def test_retry_failed_audio_walks_only_failures(studio, backend):
    backend.fail_audio = {1, 3}
    await advance_to_narrations(studio)
    await studio.generate_audio()
    backend.fail_audio.clear()
    backend.calls["audio"].clear()

    await studio.retry_failed_audio()

    assert backend.calls["audio"] == [1, 3]
    assert all(isinstance(a, Success) for a in studio.project.audio_results())


@pytest.mark.asyncio
async def test_export_sets_merged_url_and_records_upload(studio, output_dir):
    await advance_to_videos(studio)
    progress = []

    result = await studio.export(on_progress=progress.append)

    assert studio.project.merged_video_url == result.download_url
    assert studio.project.final_video_urls == [result.uploaded_url]
    assert studio.export_status == "done"
    assert studio.sequencer.current_state() == "exported"
    assert progress[-1] == 100.0
    assert result.local_path.startswith(str(output_dir / studio.project_id))


@pytest.mark.asyncio
async def test_failed_export_keeps_previous_merged_url(studio, storage):
    await advance_to_videos(studio)
    first = await studio.export()

    storage.fail_fetch.add(studio.project.generated_video[2].value)
    with pytest.raises(ExportError):
        await studio.export()

    assert studio.project.merged_video_url == first.download_url
    assert studio.export_status == "failed"
    assert studio.export_error


@pytest.mark.asyncio
async def test_export_requires_videos(studio):
    await advance_to_narrations(studio)

    with pytest.raises(StageError):
        await studio.export()


@pytest.mark.asyncio
async def test_edits_mark_downstream_stale(studio):
    await advance_to_narrations(studio)

    studio.edit_story("Pip decides to sculpt.")

    assert studio.stale_stages() == [Stage.IMAGE_PROMPTS, Stage.NARRATIONS]
    assert len(studio.project.image_prompts) == 5


@pytest.mark.asyncio
async def test_edit_out_of_range(studio):
    await advance_to_narrations(studio)

    with pytest.raises(StageError):
        studio.edit_narration(9, "nope")


@pytest.mark.asyncio
async def test_load_from_history_replaces_project(make_studio):
    original = make_studio()
    await advance_to_narrations(original)
    await original.generate_audio()

    other = make_studio()
    loaded = await other.load_from_history(original.project.id)

    assert loaded == original.project
    assert other.project.narrations[0].audio != Pending()


@pytest.mark.asyncio
async def test_load_missing_history(studio):
    with pytest.raises(NotFoundError):
        await studio.load_from_history(404)


@pytest.mark.asyncio
async def test_new_scene_count_clears_per_item_results(studio, backend):
    await advance_to_narrations(studio)
    await studio.generate_audio()
    await studio.generate_images()

    backend.scene_count_value = 3
    await studio.generate_image_prompts()

    p = studio.project
    assert len(p.image_prompts) == 3
    assert p.narrations == []
    assert p.generated_images == []
    with pytest.raises(StageError):
        await studio.generate_audio()

    await studio.generate_narrations()
    await studio.generate_audio()
    await studio.generate_images()

    assert len(studio.project.audio_results()) == 3
    assert len(studio.project.generated_images) == 3


@pytest.mark.asyncio
async def test_bulk_run_is_refused_while_a_retry_is_in_flight(studio, backend):
    await advance_to_narrations(studio)
    backend.fail_image_prompts = {studio.project.image_prompts[0]}
    await studio.generate_images()

    backend.image_gate = asyncio.Event()
    retry = asyncio.create_task(studio.retry_image(0))
    await backend.image_started.wait()

    with pytest.raises(StageError, match="retries in progress"):
        await studio.generate_images()

    backend.image_gate.set()
    assert isinstance(await retry, Failed)

    backend.image_gate = None
    backend.fail_image_prompts.clear()
    await studio.generate_images()

    assert all(isinstance(r, Success) for r in studio.project.generated_images)


@pytest.mark.asyncio
async def test_second_export_is_refused_while_one_is_running(studio, transcoder):
    await advance_to_videos(studio)
    transcoder.delay = 0.05

    first = asyncio.create_task(studio.export())
    await asyncio.sleep(0)
    assert studio.export_in_progress

    with pytest.raises(StageError, match="already in progress"):
        await studio.export()
    assert studio.export_status in ("queued", "running")

    result = await first
    assert studio.export_status == "done"
    assert studio.project.merged_video_url == result.download_url
