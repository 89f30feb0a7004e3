"""Tests for durable job records."""

from shortpipe.db.models import JOB_COMPLETE, JOB_FAILED, JOB_PROCESSING


class TestJobRepository:
    async def test_create_starts_processing(self, jobs):
        job = await jobs.create("user-1", "How bees choose a new home")

        stored = await jobs.get(job.id)
        assert stored.status == JOB_PROCESSING
        assert stored.owner_id == "user-1"
        assert stored.created_at is not None

    async def test_stage_outputs_are_saved(self, jobs, job):
        await jobs.save_script(job.id, "Narration.", ["a red fox"])
        await jobs.save_image_links(job.id, ["https://m/1.png"])
        await jobs.save_audio(job.id, "https://m/voice.mp3")
        await jobs.save_captions(job.id, [{"text": "Hi", "startFrame": 0, "endFrame": 14}], 14)

        stored = await jobs.get(job.id)
        assert stored.content == "Narration."
        assert stored.image_prompts == ["a red fox"]
        assert stored.image_links == ["https://m/1.png"]
        assert stored.audio_url == "https://m/voice.mp3"
        assert stored.captions[0]["endFrame"] == 14
        assert stored.duration_frames == 14

    async def test_complete_job_is_never_failed(self, jobs, job):
        await jobs.mark_complete(job.id, "https://cdn.example.com/out.mp4")
        await jobs.mark_failed(job.id)

        assert (await jobs.get(job.id)).status == JOB_COMPLETE

    async def test_failed_job_is_never_completed(self, jobs, job):
        await jobs.mark_failed(job.id)
        await jobs.mark_complete(job.id, "https://cdn.example.com/out.mp4")

        stored = await jobs.get(job.id)
        assert stored.status == JOB_FAILED
        assert stored.video_url is None

    async def test_get_for_owner(self, jobs, job):
        assert (await jobs.get_for_owner(job.id, "user-1")).id == job.id
        assert await jobs.get_for_owner(job.id, "user-2") is None

    async def test_list_jobs_filters_by_owner(self, jobs, job):
        await jobs.create("user-2", "Something about glaciers")

        assert [j.id for j in await jobs.list_jobs("user-1")] == [job.id]
        assert len(await jobs.list_jobs()) == 2
