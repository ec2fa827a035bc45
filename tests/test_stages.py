"""Tests for the stage sequencer: gating, merging and staleness."""

import pytest

from story_studio.errors import StageError
from story_studio.models.project import Failed, Narration, Pending, StoryProject, Success
from story_studio.pipeline.stages import Stage, StageSequencer


def story_result(prompt="a robot learns to paint"):
    return {"original_prompt": prompt, "full_prompt": f"Write about {prompt}", "story": "Pip paints."}


@pytest.fixture
def sequencer():
    seq = StageSequencer()
    seq.apply_stage_result(Stage.STORY, story_result())
    seq.apply_stage_result(Stage.IMAGE_PROMPTS, ["p1", "p2", "p3"])
    return seq


def test_empty_project_cannot_advance_any_stage():
    seq = StageSequencer()
    assert seq.current_state() == "empty"
    for stage in Stage:
        assert seq.can_advance(stage) is False


def test_gating_follows_prerequisites(sequencer):
    assert sequencer.can_advance(Stage.IMAGE_PROMPTS)
    assert sequencer.can_advance(Stage.NARRATIONS)
    assert sequencer.can_advance(Stage.IMAGES)
    assert not sequencer.can_advance(Stage.AUDIO)
    assert not sequencer.can_advance(Stage.VIDEO)
    assert not sequencer.can_advance(Stage.EXPORT)

    sequencer.apply_stage_result(Stage.NARRATIONS, ["n1", "n2", "n3"])
    assert sequencer.can_advance(Stage.AUDIO)
    assert sequencer.current_state() == "narrations"


def test_apply_stage_result_leaves_other_fields_untouched(sequencer):
    before = sequencer.project
    sequencer.apply_stage_result(Stage.IMAGES, [Success(value="i1"), Failed(message="x"), Pending()])

    after = sequencer.project
    assert after.story == before.story
    assert after.image_prompts == before.image_prompts
    assert after.narrations == before.narrations
    assert after.generated_video == []
    assert after.generated_images[1] == Failed(message="x")


def test_per_item_length_mismatch_is_rejected(sequencer):
    with pytest.raises(StageError, match="images result has 1 items, expected 3"):
        sequencer.apply_stage_result(Stage.IMAGES, [Success(value="i1")])
    with pytest.raises(StageError):
        sequencer.apply_stage_result(Stage.NARRATIONS, ["only one"])
    assert sequencer.project.generated_images == []
    assert sequencer.project.narrations == []


def test_apply_item_result_replaces_one_slot(sequencer):
    sequencer.apply_stage_result(Stage.IMAGES, [Success(value="a"), Failed(message="x"), Success(value="c")])

    sequencer.apply_item_result(Stage.IMAGES, 1, Success(value="b"))

    assert sequencer.project.generated_images == [
        Success(value="a"), Success(value="b"), Success(value="c"),
    ]


def test_apply_item_result_rejects_single_shot_stage(sequencer):
    with pytest.raises(ValueError):
        sequencer.apply_item_result(Stage.STORY, 0, Success(value="x"))


def test_editing_story_does_not_clear_downstream_but_marks_stale(sequencer):
    sequencer.apply_stage_result(Stage.NARRATIONS, ["n1", "n2", "n3"])
    assert sequencer.stale_stages() == []

    sequencer.edit_story("Pip sculpts instead.")

    assert sequencer.project.image_prompts == ["p1", "p2", "p3"]
    assert sequencer.project.narrations[0].script == "n1"
    assert sequencer.stale_stages() == [Stage.IMAGE_PROMPTS, Stage.NARRATIONS]


def test_regenerating_a_stage_clears_its_staleness(sequencer):
    sequencer.edit_story("Pip sculpts instead.")
    assert Stage.IMAGE_PROMPTS in sequencer.stale_stages()

    sequencer.apply_stage_result(Stage.IMAGE_PROMPTS, ["q1", "q2", "q3"])

    assert Stage.IMAGE_PROMPTS not in sequencer.stale_stages()


def test_edit_image_prompt_marks_images_stale(sequencer):
    sequencer.apply_stage_result(Stage.IMAGES, [Success(value="a"), Success(value="b"), Success(value="c")])

    sequencer.edit_image_prompt(0, "p1, at dawn")

    assert Stage.IMAGES in sequencer.stale_stages()
    assert sequencer.project.generated_images[0] == Success(value="a")


def test_edit_narration_resets_that_audio_slot(sequencer):
    sequencer.apply_stage_result(Stage.NARRATIONS, ["n1", "n2", "n3"])
    sequencer.apply_stage_result(Stage.AUDIO, [Success(value=f"a{i}") for i in range(3)])

    sequencer.edit_narration(1, "new line")

    narrations = sequencer.project.narrations
    assert narrations[1] == Narration(script="new line", audio=Pending())
    assert narrations[0].audio == Success(value="a0")
    assert Stage.AUDIO in sequencer.stale_stages()


def test_next_stage_points_at_first_unfinished_stage(sequencer):
    assert sequencer.next_stage() is Stage.NARRATIONS

    sequencer.apply_stage_result(Stage.NARRATIONS, ["n1", "n2", "n3"])
    sequencer.apply_stage_result(Stage.AUDIO, [Success(value="a"), Failed(message="x"), Success(value="c")])
    assert sequencer.next_stage() is Stage.AUDIO


def test_export_result_sets_exported_state():
    project = StoryProject(
        original_prompt="t",
        story="s",
        image_prompts=["p"],
        narrations=[Narration(script="n", audio=Success(value="a"))],
        generated_images=[Success(value="i")],
        generated_video=[Success(value="v")],
    )
    seq = StageSequencer(project)
    assert seq.can_advance(Stage.EXPORT)

    seq.apply_stage_result(Stage.EXPORT, "/files/output/p/final.mp4")

    assert seq.current_state() == "exported"
    assert seq.project.merged_video_url == "/files/output/p/final.mp4"


def test_new_scene_count_clears_per_item_lists(sequencer):
    sequencer.apply_stage_result(Stage.NARRATIONS, ["n1", "n2", "n3"])
    sequencer.apply_stage_result(Stage.AUDIO, [Success(value=f"a{i}") for i in range(3)])
    sequencer.apply_stage_result(Stage.IMAGES, [Success(value=f"i{i}") for i in range(3)])

    sequencer.apply_stage_result(Stage.IMAGE_PROMPTS, ["q1", "q2"])

    p = sequencer.project
    assert p.image_prompts == ["q1", "q2"]
    assert p.narrations == []
    assert p.generated_images == []
    assert p.generated_video == []
    assert sequencer.stale_stages() == []
    assert sequencer.next_stage() is Stage.NARRATIONS


def test_same_scene_count_keeps_per_item_lists(sequencer):
    sequencer.apply_stage_result(Stage.IMAGES, [Success(value=f"i{i}") for i in range(3)])

    sequencer.apply_stage_result(Stage.IMAGE_PROMPTS, ["q1", "q2", "q3"])

    assert len(sequencer.project.generated_images) == 3
    assert Stage.IMAGES in sequencer.stale_stages()
